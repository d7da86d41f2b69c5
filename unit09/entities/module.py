"""
Module schema and semantic version helpers.

Invariants:
- A module always references its owning repository.
- current_version never decreases.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, constr, field_serializer, field_validator

from .enums import ModuleKind, VersionPart
from .primitives import NO_CHANGE, NoChange, generate_key, is_no_change, normalize_tags, utc_now


class SemanticVersion(NamedTuple):
    """(major, minor, patch). Tuple ordering gives lexicographic comparison."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, text: str) -> Optional["SemanticVersion"]:
        """Parse "1.2.3" or "v1.2.3". Returns None when malformed."""
        trimmed = text.strip()
        if trimmed.startswith("v"):
            trimmed = trimmed[1:]
        parts = trimmed.split(".")
        if len(parts) != 3 or not all(part.isascii() and part.isdigit() for part in parts):
            return None
        return cls(*(int(part) for part in parts))

    def bump(self, part: Union[VersionPart, str]) -> "SemanticVersion":
        part = VersionPart(part)
        if part is VersionPart.MAJOR:
            return SemanticVersion(self.major + 1, 0, 0)
        if part is VersionPart.MINOR:
            return SemanticVersion(self.major, self.minor + 1, 0)
        return SemanticVersion(self.major, self.minor, self.patch + 1)

    def format(self) -> str:
        return f"v{self.major}.{self.minor}.{self.patch}"


INITIAL_VERSION = SemanticVersion(0, 1, 0)


def compare_semantic_version(a: SemanticVersion, b: SemanticVersion) -> int:
    """Return -1, 0 or 1."""
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def _coerce_version(value):
    if value is None or is_no_change(value) or isinstance(value, SemanticVersion):
        return value
    if isinstance(value, str):
        parsed = SemanticVersion.parse(value)
        if parsed is None:
            raise ValueError(f"Malformed semantic version: {value!r}")
        return parsed
    major, minor, patch = value
    if min(major, minor, patch) < 0:
        raise ValueError("Semantic version components must be non-negative")
    return SemanticVersion(int(major), int(minor), int(patch))


class Module(BaseModel):
    """A unit of code detected inside a repository."""

    model_config = ConfigDict(extra="ignore")

    module_key: constr(min_length=1, max_length=128)
    repo_key: constr(min_length=1, max_length=128)
    name: constr(min_length=1, max_length=256)
    kind: ModuleKind = ModuleKind.OTHER
    description: Optional[str] = None
    metadata_uri: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True
    current_version: SemanticVersion = INITIAL_VERSION
    recommended_version: Optional[SemanticVersion] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tag_list(cls, value):
        return normalize_tags(value)

    @field_validator("current_version", "recommended_version", mode="before")
    @classmethod
    def coerce_versions(cls, value):
        return _coerce_version(value)

    @field_serializer("current_version", "recommended_version", when_used="json")
    def format_versions(self, value: Optional[SemanticVersion]) -> Optional[str]:
        return value.format() if value is not None else None


class ModuleCreate(BaseModel):
    """Schema for registering a new Module under an existing Repo."""

    model_config = ConfigDict(extra="forbid")

    module_key: constr(min_length=1, max_length=128) = Field(default_factory=generate_key)
    repo_key: constr(min_length=1, max_length=128)
    name: constr(min_length=1, max_length=256)
    kind: ModuleKind = ModuleKind.OTHER
    description: Optional[str] = None
    metadata_uri: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    version: SemanticVersion = INITIAL_VERSION

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tag_list(cls, value):
        return normalize_tags(value)

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, value):
        return _coerce_version(value)


class ModuleUpdate(BaseModel):
    """Partial update for a Module. Versions move through bump/set only."""

    model_config = ConfigDict(extra="forbid")

    name: Union[constr(min_length=1, max_length=256), NoChange] = NO_CHANGE
    kind: Union[ModuleKind, NoChange] = NO_CHANGE
    description: Union[Optional[str], NoChange] = NO_CHANGE
    metadata_uri: Union[Optional[str], NoChange] = NO_CHANGE
    tags: Union[List[str], NoChange] = NO_CHANGE
    is_active: Union[bool, NoChange] = NO_CHANGE
    recommended_version: Union[Optional[SemanticVersion], NoChange] = NO_CHANGE

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tag_list(cls, value):
        if is_no_change(value):
            return value
        return normalize_tags(value)

    @field_validator("recommended_version", mode="before")
    @classmethod
    def coerce_version(cls, value):
        return _coerce_version(value)


class ModuleFilter(BaseModel):
    """Filter for listing modules."""

    model_config = ConfigDict(extra="forbid")

    repo_key: Optional[str] = None
    search: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    kind: Optional[ModuleKind] = None
    active_only: bool = False
    limit: int = Field(100, ge=1, le=1000)


class ModuleVersion(BaseModel):
    """Immutable snapshot of a module taken when a version is published."""

    model_config = ConfigDict(extra="ignore")

    module_key: str
    version: SemanticVersion
    metadata_uri: Optional[str] = None
    label: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, value):
        return _coerce_version(value)

    @field_serializer("version", when_used="json")
    def format_version(self, value: SemanticVersion) -> str:
        return value.format()


class ModuleLink(BaseModel):
    """Association between a module and a repository that uses it.

    A module belongs to exactly one repository, but it may be linked to
    any number of others for discovery.
    """

    model_config = ConfigDict(extra="ignore")

    module_key: str
    repo_key: str
    is_primary: bool = False
    notes: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
