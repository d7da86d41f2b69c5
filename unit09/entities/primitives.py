"""
Common primitives shared by all entity schemas.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic_core import core_schema
from ulid import ULID


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class _NoChange:
    """Marker for a field that an update leaves untouched.

    Distinct from ``None``, which means "clear this optional field".
    """

    _instance: Optional["_NoChange"] = None

    def __new__(cls) -> "_NoChange":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_CHANGE"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_NoChange":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_NoChange":
        return self

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any):
        return core_schema.is_instance_schema(cls)


NO_CHANGE = _NoChange()
NoChange = _NoChange


def is_no_change(value: Any) -> bool:
    return value is NO_CHANGE


def normalize_tags(tags: Union[str, Iterable[str], None]) -> List[str]:
    """Trim, lower-case, drop empties and de-duplicate tags.

    Accepts a list or a comma-separated string. Order of first occurrence is
    preserved.
    """
    if not tags:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")

    normalized: List[str] = []
    for tag in tags:
        tag = str(tag).strip().lower()
        if tag and tag not in normalized:
            normalized.append(tag)
    return normalized


def collect_changes(update: Any) -> Dict[str, Any]:
    """Return the fields of an update schema that are not NO_CHANGE."""
    return {
        name: getattr(update, name)
        for name in type(update).model_fields
        if not is_no_change(getattr(update, name))
    }


def generate_ulid() -> str:
    """Generate a ULID string.

    ULIDs are lexicographically sortable and globally unique.
    """
    return str(ULID())


def generate_key() -> str:
    """Generate a fresh 32-byte natural key, hex encoded."""
    return secrets.token_hex(32)
