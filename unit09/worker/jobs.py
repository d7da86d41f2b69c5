"""
Pipeline job model.

A job is one unit of pipeline work. Its payload is a tagged union keyed by
job type, so every handler receives exactly the fields its type declares.

Lifecycle:
    pending -> running -> completed
                       -> retryable (attempts < max_attempts) -> running ...
                       -> failed    (attempts exhausted, or terminal)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from ..entities.primitives import generate_ulid, utc_now
from ..errors import ValidationError

DEFAULT_MAX_ATTEMPTS = 3


class JobType(str, Enum):
    """Closed set of pipeline job types."""

    OBSERVE_REPO = "observeRepo"
    ANALYZE_REPO = "analyzeRepo"
    DECOMPOSE = "decompose"
    GENERATE_MODULES = "generateModules"
    VALIDATE_MODULES = "validateModules"
    SYNC_ON_CHAIN = "syncOnChain"
    FORK_EVOLUTION = "forkEvolution"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRYABLE = "retryable"
    COMPLETED = "completed"
    FAILED = "failed"


DISPATCHABLE_STATUSES = (JobStatus.PENDING, JobStatus.RETRYABLE)


class PipelineSource(BaseModel):
    """Where the stages read a repository's code from."""

    model_config = ConfigDict(extra="forbid")

    repo_key: str = Field(..., min_length=1)
    revision: str = "HEAD"
    local_path: Optional[str] = None
    url: Optional[str] = None


# =============================================================================
# Payloads
# =============================================================================


class _RepoPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    repo_key: str = Field(..., min_length=1)
    source: Optional[PipelineSource] = None

    @model_validator(mode="after")
    def default_source(self):
        if self.source is None:
            self.source = PipelineSource(repo_key=self.repo_key)
        elif self.source.repo_key != self.repo_key:
            raise ValueError("source.repo_key must match repo_key")
        return self


class ObserveRepoPayload(_RepoPayload):
    type: Literal["observeRepo"] = "observeRepo"


class AnalyzeRepoPayload(_RepoPayload):
    type: Literal["analyzeRepo"] = "analyzeRepo"


class DecomposePayload(_RepoPayload):
    type: Literal["decompose"] = "decompose"


class GenerateModulesPayload(_RepoPayload):
    type: Literal["generateModules"] = "generateModules"


class ValidateModulesPayload(_RepoPayload):
    type: Literal["validateModules"] = "validateModules"


class SyncOnChainPayload(_RepoPayload):
    type: Literal["syncOnChain"] = "syncOnChain"


class ForkEvolutionPayload(_RepoPayload):
    type: Literal["forkEvolution"] = "forkEvolution"
    fork_id: str = Field(..., min_length=1)


JobPayload = Annotated[
    Union[
        ObserveRepoPayload,
        AnalyzeRepoPayload,
        DecomposePayload,
        GenerateModulesPayload,
        ValidateModulesPayload,
        SyncOnChainPayload,
        ForkEvolutionPayload,
    ],
    Field(discriminator="type"),
]

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


def parse_payload(job_type: Union[JobType, str], payload: Union[BaseModel, Dict[str, Any]]):
    """Validate ``payload`` as the variant for ``job_type``.

    Raises:
        pydantic.ValidationError: If the payload does not fit the job type
    """
    job_type = JobType(job_type)
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    return _payload_adapter.validate_python({**payload, "type": job_type.value})


def generate_job_id() -> str:
    return f"job-{generate_ulid()}"


# =============================================================================
# Job
# =============================================================================


class Job(BaseModel):
    """A pipeline job and its lifecycle state."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=generate_job_id)
    type: JobType
    payload: JobPayload
    status: JobStatus = JobStatus.PENDING

    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    attempts: int = Field(0, ge=0)
    max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def check_payload_type(self) -> "Job":
        if self.payload.type != self.type.value:
            raise ValueError(
                f"Payload of type {self.payload.type} does not match job type {self.type.value}"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def subject_key(self) -> str:
        """Key the job is about: the fork id for fork jobs, else the repo key."""
        return getattr(self.payload, "fork_id", None) or self.payload.repo_key

    def start(self, now: Optional[datetime] = None) -> None:
        if self.status not in DISPATCHABLE_STATUSES:
            raise ValidationError(
                f"Job {self.id} cannot start from status {self.status.value}",
                {"job_id": self.id},
            )
        self.status = JobStatus.RUNNING
        self.started_at = now or utc_now()

    def complete(self, result: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> None:
        if self.status is JobStatus.COMPLETED:
            # Repeat completion keeps the first result
            return
        if self.status is JobStatus.FAILED:
            raise ValidationError(
                f"Job {self.id} already failed", {"job_id": self.id}
            )
        self.status = JobStatus.COMPLETED
        self.completed_at = now or utc_now()
        self.result = result
        self.error = None

    def fail(self, error: str, terminal: bool = False, now: Optional[datetime] = None) -> None:
        if self.is_terminal:
            raise ValidationError(
                f"Job {self.id} is already {self.status.value}", {"job_id": self.id}
            )
        self.attempts += 1
        self.error = error
        if terminal or self.attempts >= self.max_attempts:
            self.status = JobStatus.FAILED
            self.failed_at = now or utc_now()
        else:
            self.status = JobStatus.RETRYABLE

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")


@dataclass
class JobResult:
    """What a handler reports back to the worker loop."""

    success: bool
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "output": self.output}
        if self.error is not None:
            data["error"] = self.error
        return data
