"""
Fork schema and lineage.

Forks form a tree through parent references and an integer depth.

Invariants:
- A root fork has parent None, depth 0 and is_root True, and only a root does.
- A non-root fork's depth equals its parent's depth + 1. The creator sets it
  from the stored parent; it is never recomputed afterwards.
- A fork key is created at most once.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator, model_validator

from .enums import ForkType
from .primitives import NO_CHANGE, NoChange, generate_key, is_no_change, normalize_tags, utc_now


class Fork(BaseModel):
    """A lineage node."""

    model_config = ConfigDict(extra="ignore")

    fork_key: constr(min_length=1, max_length=128)
    parent: Optional[str] = None
    label: constr(min_length=1, max_length=256)
    fork_type: ForkType = ForkType.INSTANCE
    metadata_uri: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    depth: int = Field(0, ge=0)
    is_root: bool = True
    is_active: bool = True

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tag_list(cls, value):
        return normalize_tags(value)

    @model_validator(mode="after")
    def check_root_consistency(self) -> "Fork":
        root_by_parent = self.parent is None
        root_by_depth = self.depth == 0
        if not (root_by_parent == root_by_depth == self.is_root):
            raise ValueError(
                f"Fork {self.fork_key} is inconsistent: parent={self.parent!r}, "
                f"depth={self.depth}, is_root={self.is_root}"
            )
        return self


class ForkCreate(BaseModel):
    """Schema for creating a Fork. Depth and root flag are derived."""

    model_config = ConfigDict(extra="forbid")

    fork_key: constr(min_length=1, max_length=128) = Field(default_factory=generate_key)
    parent: Optional[str] = None
    label: constr(min_length=1, max_length=256)
    fork_type: ForkType = ForkType.INSTANCE
    metadata_uri: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tag_list(cls, value):
        return normalize_tags(value)


class ForkUpdate(BaseModel):
    """Partial update for a Fork.

    Each field is applied independently; NO_CHANGE leaves the stored value
    as is. ``metadata_uri=None`` clears the URI.
    """

    model_config = ConfigDict(extra="forbid")

    label: Union[constr(min_length=1, max_length=256), NoChange] = NO_CHANGE
    tags: Union[List[str], NoChange] = NO_CHANGE
    metadata_uri: Union[Optional[str], NoChange] = NO_CHANGE
    is_active: Union[bool, NoChange] = NO_CHANGE

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tag_list(cls, value):
        if is_no_change(value):
            return value
        return normalize_tags(value)


class ForkFilter(BaseModel):
    """Filter for listing forks.

    ``parent`` left at NO_CHANGE does not filter; ``parent=None`` selects
    roots only.
    """

    model_config = ConfigDict(extra="forbid")

    fork_type: Optional[ForkType] = None
    parent: Union[Optional[str], NoChange] = NO_CHANGE
    search: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    active_only: bool = False
    limit: int = Field(100, ge=1, le=1000)


class ForkLineage(BaseModel):
    """Ordered ancestor chain from a fork's root to the fork itself."""

    root_key: str
    path: List[str]


def build_lineage(fork: Fork, ancestors: Sequence[Fork]) -> ForkLineage:
    """Build the lineage of ``fork`` from its ancestors.

    The caller supplies a contiguous ancestor chain; it is sorted by depth
    but not otherwise checked.
    """
    ordered = sorted(ancestors, key=lambda item: item.depth)
    path = [item.fork_key for item in ordered]
    path.append(fork.fork_key)
    root_key = ordered[0].fork_key if ordered else fork.fork_key
    return ForkLineage(root_key=root_key, path=path)
