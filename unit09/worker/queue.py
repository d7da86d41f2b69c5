"""
Job queue contract and the in-memory implementation.

The queue orders jobs by enqueue time and never makes a dispatch decision:
``next`` only reports the oldest dispatchable job. The worker loop decides
whether to start it.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar, Union

import structlog
from pydantic import BaseModel

from ..errors import NotFoundError
from .jobs import DISPATCHABLE_STATUSES, DEFAULT_MAX_ATTEMPTS, Job, JobStatus, JobType, parse_payload

logger = structlog.get_logger()

T = TypeVar("T")


def summarize_activity(jobs: Iterable[Job]) -> Dict[str, int]:
    """Dispatch counters derived from job state.

    ``failed`` counts failed handler attempts and ``started`` counts every
    dispatch: failed attempts plus completed and running jobs. A job that
    failed without ever being started (no handler) counts in neither.
    """
    completed = active = failed = 0
    for job in jobs:
        if job.started_at is None:
            continue
        failed += job.attempts
        if job.status is JobStatus.COMPLETED:
            completed += 1
        elif job.status is JobStatus.RUNNING:
            active += 1
    return {
        "started": failed + completed + active,
        "completed": completed,
        "failed": failed,
        "active": active,
    }


class JobQueue(ABC):
    """Abstract base class for job queues."""

    # True when calls do blocking I/O and should run off the event loop
    blocking = False

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.max_attempts = max_attempts

    def build_job(
        self,
        job_type: Union[JobType, str],
        payload: Union[BaseModel, Dict[str, Any]],
        max_attempts: Optional[int] = None,
    ) -> Job:
        job_type = JobType(job_type)
        return Job(
            type=job_type,
            payload=parse_payload(job_type, payload),
            max_attempts=max_attempts or self.max_attempts,
        )

    @abstractmethod
    def enqueue(
        self,
        job_type: Union[JobType, str],
        payload: Union[BaseModel, Dict[str, Any]],
        max_attempts: Optional[int] = None,
    ) -> Job:
        """Create a pending job and return it. Identical payloads are never merged."""
        pass

    @abstractmethod
    def next(self) -> Optional[Job]:
        """Return the oldest pending or retryable job without starting it."""
        pass

    @abstractmethod
    def mark_started(self, job: Job) -> Job:
        pass

    @abstractmethod
    def mark_completed(self, job: Job, result: Optional[Dict[str, Any]]) -> Job:
        """Complete a job. A repeat call on a completed job changes nothing."""
        pass

    @abstractmethod
    def mark_failed(self, job: Job, error: str, terminal: bool = False) -> Job:
        """Count a failed attempt.

        The job becomes retryable while attempts remain, failed otherwise or
        when ``terminal`` is set.
        """
        pass

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    def list(self) -> List[Job]:
        """Snapshot of all jobs in enqueue order."""
        pass

    def activity(self) -> Dict[str, int]:
        """Started, completed, failed and active counts across all workers."""
        return summarize_activity(self.list())


async def queue_call(queue: JobQueue, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call a queue method, in a worker thread when the backend blocks."""
    if queue.blocking:
        return await asyncio.to_thread(func, *args, **kwargs)
    return func(*args, **kwargs)


class InMemoryJobQueue(JobQueue):
    """Process-local queue.

    Jobs are kept in a dict, which preserves insertion order. The worker loop
    and callers share the stored Job objects; ``list`` hands out copies.
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        super().__init__(max_attempts)
        self._jobs: Dict[str, Job] = {}

    def enqueue(self, job_type, payload, max_attempts=None) -> Job:
        job = self.build_job(job_type, payload, max_attempts)
        self._jobs[job.id] = job
        logger.info(
            "job_enqueued",
            job_id=job.id,
            job_type=job.type.value,
            repo_key=job.payload.repo_key,
        )
        return job

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    def next(self) -> Optional[Job]:
        for job in self._jobs.values():
            if job.status in DISPATCHABLE_STATUSES:
                return job
        return None

    def mark_started(self, job: Job) -> Job:
        job = self._require(job.id)
        job.start()
        return job

    def mark_completed(self, job: Job, result: Optional[Dict[str, Any]]) -> Job:
        job = self._require(job.id)
        job.complete(result)
        return job

    def mark_failed(self, job: Job, error: str, terminal: bool = False) -> Job:
        job = self._require(job.id)
        job.fail(error, terminal=terminal)
        return job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def list(self) -> List[Job]:
        return [job.model_copy(deep=True) for job in self._jobs.values()]

    def __len__(self) -> int:
        return len(self._jobs)
