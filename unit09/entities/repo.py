"""
Repository schema.

A repository is the root of the entity hierarchy: modules point at their
owning repository by key, and observation jobs are always issued for one.

Invariants:
- repo_key is immutable once created.
- Updates may only touch name, url, description, tags, visibility,
  default_branch, allow_observation and is_active.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator

from .enums import SourceType, Visibility
from .primitives import NO_CHANGE, NoChange, generate_key, is_no_change, normalize_tags, utc_now


class RepoStats(BaseModel):
    """Usage statistics gathered by observations."""

    model_config = ConfigDict(extra="ignore")

    files: int = Field(0, ge=0)
    lines_of_code: int = Field(0, ge=0)
    modules_detected: int = Field(0, ge=0)
    last_observation_at: Optional[datetime] = None


class Repo(BaseModel):
    """A registered source repository."""

    model_config = ConfigDict(extra="ignore")

    repo_key: constr(min_length=1, max_length=128) = Field(
        ..., description="Natural key; immutable"
    )
    name: constr(min_length=1, max_length=256)
    url: constr(max_length=2000) = ""
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    visibility: Visibility = Visibility.PUBLIC
    source_type: SourceType = SourceType.GITHUB
    default_branch: Optional[str] = None
    allow_observation: bool = True
    is_active: bool = True
    stats: Optional[RepoStats] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tag_list(cls, value):
        return normalize_tags(value)


class RepoCreate(BaseModel):
    """Schema for registering a new Repo."""

    model_config = ConfigDict(extra="forbid")

    repo_key: constr(min_length=1, max_length=128) = Field(default_factory=generate_key)
    name: constr(min_length=1, max_length=256)
    url: constr(max_length=2000) = ""
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    visibility: Visibility = Visibility.PUBLIC
    source_type: SourceType = SourceType.GITHUB
    default_branch: Optional[str] = None
    allow_observation: bool = True

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tag_list(cls, value):
        return normalize_tags(value)


class RepoUpdate(BaseModel):
    """Partial update for a Repo. Fields left at NO_CHANGE are untouched."""

    model_config = ConfigDict(extra="forbid")

    name: Union[constr(min_length=1, max_length=256), NoChange] = NO_CHANGE
    url: Union[constr(max_length=2000), NoChange] = NO_CHANGE
    description: Union[Optional[str], NoChange] = NO_CHANGE
    tags: Union[List[str], NoChange] = NO_CHANGE
    visibility: Union[Visibility, NoChange] = NO_CHANGE
    default_branch: Union[Optional[str], NoChange] = NO_CHANGE
    allow_observation: Union[bool, NoChange] = NO_CHANGE
    is_active: Union[bool, NoChange] = NO_CHANGE

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tag_list(cls, value):
        if is_no_change(value):
            return value
        return normalize_tags(value)


class RepoFilter(BaseModel):
    """Filter for listing repositories."""

    model_config = ConfigDict(extra="forbid")

    search: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    visibility: Optional[Visibility] = None
    source_type: Optional[SourceType] = None
    active_only: bool = False
    limit: int = Field(100, ge=1, le=1000)
