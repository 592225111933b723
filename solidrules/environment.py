"""Environment configuration management."""

import os
import sys
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from solidrules.errors import ConfigurationError

load_dotenv()

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ["true", "1", "yes", "on"]


def mask_sensitive_value(value: str) -> str:
    """
    Mask a sensitive value for display.

    Args:
        value: The value to mask

    Returns:
        Masked value (first 2 chars + 3 stars)
    """
    if not value or len(value) <= 2:
        return "***"
    return value[:2] + "***"


class Settings(BaseModel):
    """Runtime settings, read from the environment and an optional .env file."""

    GITHUB_TOKEN: Optional[str] = Field(None, description="GitHub personal access token")
    SOLIDRULES_DEBUG: bool = Field(False, description="Enable debug logging")
    SOLIDRULES_LOG_LEVEL: str = Field(
        "INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    SOLIDRULES_DATA_DIR: Path = Field(
        default_factory=lambda: Path.home() / ".solidrules", description="Local mirror location"
    )
    SOLIDRULES_RULES_DIRECTORY: str = Field(
        ".cursor/rules", description="Workspace-relative directory for projected rule files"
    )
    SOLIDRULES_LEGACY_FORMAT: bool = Field(
        False, description="Also maintain the consolidated legacy .cursorrules file"
    )
    SOLIDRULES_CATALOG_OWNER: str = "PatrickJS"
    SOLIDRULES_CATALOG_REPO: str = "awesome-cursorrules"
    SOLIDRULES_CATALOG_PATH: str = "rules"
    SOLIDRULES_SYNC_DELAY: float = Field(2.0, ge=0, description="Workspace sync debounce (seconds)")
    SOLIDRULES_NOTIFY_DELAY: float = Field(0.1, ge=0, description="Change signal debounce (seconds)")
    SOLIDRULES_FULL_REFRESH_RATIO: float = Field(
        0.5, ge=0, le=1, description="Refetch everything when the mirror holds less than this share"
    )
    SOLIDRULES_HASH_CACHE_SIZE: int = Field(1000, ge=1, description="Projection hash cache capacity")

    @field_validator("SOLIDRULES_LOG_LEVEL")
    @classmethod
    def _check_level(cls, value: str) -> str:
        value = value.upper()
        if value not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return value

    @field_validator("GITHUB_TOKEN")
    @classmethod
    def _blank_token_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def authenticated(self) -> bool:
        return self.GITHUB_TOKEN is not None

    @property
    def store_file(self) -> Path:
        return self.SOLIDRULES_DATA_DIR / "store.json"

    @property
    def log_file(self) -> Path:
        return self.SOLIDRULES_DATA_DIR / "logs" / "solidrules.log"

    def masked_token(self) -> str:
        return mask_sensitive_value(self.GITHUB_TOKEN) if self.GITHUB_TOKEN else ""

    @classmethod
    def load(cls, **overrides) -> "Settings":
        """Load settings from environment variables.

        Unset variables fall back to the field defaults. Keyword overrides win
        over the environment.

        Raises:
            ConfigurationError: If a value fails validation
        """
        env_vars = {}
        for name in cls.model_fields:
            value = os.getenv(name)
            if value is not None and value != "":
                env_vars[name] = value
        for name in ["SOLIDRULES_DEBUG", "SOLIDRULES_LEGACY_FORMAT"]:
            if name in env_vars:
                env_vars[name] = _env_bool(name)
        env_vars.update(overrides)
        try:
            return cls(**env_vars)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def configure_logging(settings: Settings, console_sink: Optional[Any] = None) -> None:
    """Replace loguru's default sink with one honouring the configured level.

    ``console_sink`` (e.g. a RichHandler) replaces the plain stderr sink.
    """
    logger.remove()
    log_level = "DEBUG" if settings.SOLIDRULES_DEBUG else settings.SOLIDRULES_LOG_LEVEL
    if console_sink is None:
        logger.add(sys.stderr, level=log_level, format=LOG_FORMAT)
    else:
        logger.add(console_sink, level=log_level, format="{message}")

    if settings.SOLIDRULES_DEBUG:
        try:
            settings.log_file.parent.mkdir(parents=True, exist_ok=True)
            logger.add(settings.log_file, level="DEBUG", rotation="5 MB", retention=3)
        except OSError as e:
            logger.error(f"Failed to set up file logging: {e}")


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
        configure_logging(_settings)
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
