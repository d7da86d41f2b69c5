"""
Error taxonomy for unit09.

InvalidKey, NotFound, AlreadyExists and Validation are local conditions the
caller is expected to handle (e.g. answer 400/404/409 upstream).
StageFailure and TransportError surface as job attempt failures.
NoHandler is terminal for the job it was raised for.
"""

from typing import Any, Dict, Optional


class Unit09Error(Exception):
    """Base class for all domain errors."""

    code = "UNKNOWN"
    retriable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "retriable": self.retriable,
        }


class InvalidKeyError(Unit09Error):
    """Raised when a natural key has the wrong length or format."""

    code = "INVALID_KEY"


class NotFoundError(Unit09Error):
    """Raised when an entity or job is absent."""

    code = "NOT_FOUND"

    def __init__(self, entity_kind: str, key: str):
        self.entity_kind = entity_kind
        self.key = key
        super().__init__(
            f"{entity_kind} {key} not found",
            {"entity_kind": entity_kind, "key": key},
        )


class AlreadyExistsError(Unit09Error):
    """Raised on a duplicate creation attempt at a unique address."""

    code = "ALREADY_EXISTS"

    def __init__(self, entity_kind: str, key: str):
        self.entity_kind = entity_kind
        self.key = key
        super().__init__(
            f"{entity_kind} {key} already exists",
            {"entity_kind": entity_kind, "key": key},
        )


class ValidationError(Unit09Error):
    """Raised when an operation would break an entity invariant."""

    code = "VALIDATION_FAILED"


class StageFailure(Unit09Error):
    """Raised when an external pipeline stage call fails."""

    code = "PIPELINE_FAILED"
    retriable = True

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"stage {stage} failed: {message}", {"stage": stage})


class NoHandlerError(Unit09Error):
    """Raised when a job type has no registered handler."""

    code = "NO_HANDLER"

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(
            f"No handler registered for job type {job_type}",
            {"job_type": job_type},
        )


class TransportError(Unit09Error):
    """Raised when a storage or network call fails."""

    code = "NETWORK_ERROR"
    retriable = True
