from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

PROJECT_RULES_DIR = ".cursor/rules"
LEGACY_RULES_FILE = ".cursorrules"
MODERN_RULE_SUFFIX = ".mdc"


class WorkspacePaths(BaseModel):
    """Resolves the on-disk locations SolidRules projects into for one workspace."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    root_dir: Path = Field(default_factory=lambda: Path.cwd())
    rules_directory: str = PROJECT_RULES_DIR

    @property
    def workspace_id(self) -> str:
        return str(self.root_dir.resolve())

    @property
    def workspace_name(self) -> str:
        return self.root_dir.resolve().name or "No Workspace"

    def get_root_dir(self) -> Path:
        """Get the workspace root directory path."""
        return self.root_dir

    def get_rules_dir(self, rules_directory: Optional[str] = None) -> Path:
        """Get the directory that receives one file per active rule."""
        relative = Path(rules_directory or self.rules_directory)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Rules directory must be relative to the workspace: {relative}")
        return self.root_dir / relative

    def get_legacy_file(self) -> Path:
        """Get the consolidated legacy rules file path."""
        return self.root_dir / LEGACY_RULES_FILE


# Singleton instance
_workspace_paths: Optional[WorkspacePaths] = None


def get_path_manager(root_dir: Optional[Path] = None, rules_directory: Optional[str] = None) -> WorkspacePaths:
    """Get the singleton workspace path manager, rebuilding it when a root or rules directory is given."""
    global _workspace_paths
    if _workspace_paths is None or root_dir is not None or rules_directory is not None:
        kwargs = {}
        if root_dir is not None:
            kwargs["root_dir"] = Path(root_dir)
        elif _workspace_paths is not None:
            kwargs["root_dir"] = _workspace_paths.root_dir
        if rules_directory is not None:
            kwargs["rules_directory"] = rules_directory
        _workspace_paths = WorkspacePaths(**kwargs)
        logger.debug("Workspace root set to {}", _workspace_paths.root_dir)
    return _workspace_paths
