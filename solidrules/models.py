"""
Data Models
===========

Pydantic models for everything SolidRules persists or passes between
components: mirrored rule records, per-workspace projection configuration,
update-check results and the shapes returned by the catalog.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _unique(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        value = str(value).strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


class RuleRecord(BaseModel):
    """One catalog artifact mirrored locally, or a locally authored rule."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    name: str
    description: str = ""
    content: str = ""
    technologies: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    category: str = "Other"
    is_active: bool = False
    is_favorite: bool = False
    is_custom: bool = False
    source_path: Optional[str] = None
    version_stamp: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: Optional[datetime] = None

    @field_validator("technologies", "tags", mode="before")
    @classmethod
    def _dedupe(cls, value):
        if value is None:
            return []
        return _unique(list(value))

    @field_validator("id")
    @classmethod
    def _non_empty_id(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Rule id must not be empty")
        return value

    @model_validator(mode="after")
    def _custom_has_no_source(self) -> "RuleRecord":
        if self.is_custom and (self.source_path or self.version_stamp):
            raise ValueError("Custom rules cannot carry a source path or version stamp")
        return self

    @property
    def display_date(self) -> datetime:
        """Most recent of last_updated and created_at, used for recency sorting."""
        return self.last_updated or self.created_at


class ProjectionConfig(BaseModel):
    """Projection settings and last result for one workspace."""

    workspace_id: str
    active_rule_ids: List[str] = Field(default_factory=list)
    output_directory: str = ".cursor/rules"
    legacy_format_enabled: bool = False
    modern_format_enabled: bool = True
    last_sync_date: Optional[datetime] = None


class UpdateRecord(BaseModel):
    rule_id: str
    rule_name: str
    has_update: bool
    current_version_stamp: Optional[str] = None
    latest_version_stamp: Optional[str] = None
    last_checked: datetime = Field(default_factory=utcnow)


class CatalogEntry(BaseModel):
    """One item of the remote catalog listing."""

    path: str
    name: str
    version_stamp: str
    size_bytes: int = 0


class RuleMetadata(BaseModel):
    description: str = ""
    technologies: List[str] = Field(default_factory=list)


class RefreshResult(BaseModel):
    processed_count: int = 0
    error_count: int = 0
    retried_count: int = 0
    listed_count: int = 0
    rate_limited_count: int = 0
    full_refresh: bool = False


class SortOrder(str, Enum):
    RECENT = "recent"
    ALPHABETICAL = "alphabetical"
    POPULARITY = "popularity"


class SearchFilters(BaseModel):
    technology: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    sort_by: SortOrder = SortOrder.RECENT
    favorites_only: bool = False
    active_only: bool = False


class TechnologyCount(BaseModel):
    name: str
    count: int
