"""
Lifecycle summaries and the events that move them forward.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import LifecycleEventKind, LifecycleStatus, SubjectType
from .primitives import generate_ulid, utc_now


class LifecycleEvent(BaseModel):
    """A discrete thing that happened to a subject."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=generate_ulid)
    kind: LifecycleEventKind
    subject_type: SubjectType
    subject_key: Optional[str] = Field(
        None, description="None for the global subject"
    )
    message: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    error_code: Optional[str] = None


class LifecycleSummary(BaseModel):
    """Per-subject lifecycle record."""

    model_config = ConfigDict(extra="ignore")

    subject_type: SubjectType
    subject_key: Optional[str] = None
    created_at: datetime
    last_activity_at: datetime
    last_observation_at: Optional[datetime] = None
    last_error_at: Optional[datetime] = None
    last_error_code: Optional[str] = None
    status: LifecycleStatus = LifecycleStatus.CREATED

    @classmethod
    def start(cls, event: LifecycleEvent) -> "LifecycleSummary":
        return cls(
            subject_type=event.subject_type,
            subject_key=event.subject_key,
            created_at=event.timestamp,
            last_activity_at=event.timestamp,
        )


def _running_max(current: Optional[datetime], candidate: datetime) -> datetime:
    if current is None or candidate > current:
        return candidate
    return current


_OBSERVATION_KINDS = (
    LifecycleEventKind.OBSERVATION_STARTED,
    LifecycleEventKind.OBSERVATION_COMPLETED,
)


def apply_lifecycle_event(
    summary: LifecycleSummary, event: LifecycleEvent
) -> LifecycleSummary:
    """Return a new summary with ``event`` applied.

    Timestamps only ever move forward; an event older than the summary's
    last activity still counts but leaves last_activity_at where it is.
    """
    changes = {
        "last_activity_at": _running_max(summary.last_activity_at, event.timestamp),
    }
    status = summary.status

    if event.kind in _OBSERVATION_KINDS:
        changes["last_observation_at"] = _running_max(
            summary.last_observation_at, event.timestamp
        )
        if event.kind is LifecycleEventKind.OBSERVATION_STARTED:
            status = LifecycleStatus.OBSERVING
        elif status not in (LifecycleStatus.ERROR, LifecycleStatus.ARCHIVED):
            status = LifecycleStatus.STABLE

    if event.kind is LifecycleEventKind.ERROR:
        changes["last_error_at"] = _running_max(summary.last_error_at, event.timestamp)
        changes["last_error_code"] = event.error_code
        status = LifecycleStatus.ERROR

    changes["status"] = status or LifecycleStatus.CREATED
    return summary.model_copy(update=changes)
