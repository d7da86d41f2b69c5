"""
Pipeline service: the caller-facing side of the job queue.

Used by the HTTP layer and by schedulers to enqueue typed jobs, bulk-enqueue
observations and look jobs up. Also holds the factories that build the
configured queue and ledger backends.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel

from ..config import Settings, get_settings
from ..db.base import get_session_local, init_database
from ..errors import NotFoundError, Unit09Error
from ..ledger.services import Ledger
from ..ledger.sql_store import SqlRecordStore
from ..ledger.store import InMemoryRecordStore
from .jobs import Job, JobStatus, JobType, PipelineSource
from .queue import InMemoryJobQueue, JobQueue, queue_call
from .sql_queue import SqlJobQueue

logger = structlog.get_logger()


def create_job_queue(settings: Optional[Settings] = None) -> JobQueue:
    """Build the queue backend named by ``worker_queue_backend``.

    Raises:
        ValueError: If the backend is not supported
    """
    settings = settings or get_settings()
    backend = settings.worker_queue_backend
    if backend == "memory":
        return InMemoryJobQueue(max_attempts=settings.job_max_attempts)
    if backend == "sql":
        init_database()
        return SqlJobQueue(get_session_local(), max_attempts=settings.job_max_attempts)
    raise ValueError(f"Unsupported queue backend: {backend}. Supported: memory, sql")


def create_ledger(settings: Optional[Settings] = None) -> Ledger:
    """Build a Ledger over the store named by ``ledger_backend``.

    Raises:
        ValueError: If the backend is not supported
    """
    settings = settings or get_settings()
    backend = settings.ledger_backend
    if backend == "memory":
        return Ledger(InMemoryRecordStore())
    if backend == "sql":
        init_database()
        return Ledger(SqlRecordStore(get_session_local()))
    raise ValueError(f"Unsupported ledger backend: {backend}. Supported: memory, sql")


class PipelineService:
    """Enqueue and inspect pipeline jobs."""

    def __init__(self, queue: JobQueue, ledger: Optional[Ledger] = None):
        self.queue = queue
        self.ledger = ledger

    def enqueue(
        self,
        job_type: Union[JobType, str],
        payload: Union[BaseModel, Dict[str, Any]],
        max_attempts: Optional[int] = None,
    ) -> Job:
        """Enqueue one job.

        Raises:
            pydantic.ValidationError: If the payload does not fit the job type
        """
        return self.queue.enqueue(job_type, payload, max_attempts=max_attempts)

    async def enqueue_observations(self) -> List[Job]:
        """Enqueue an observeRepo job for every active, observable repository."""
        if self.ledger is None:
            return []

        jobs = []
        for repo in await self.ledger.repos.list_observable():
            source = PipelineSource(
                repo_key=repo.repo_key,
                revision=repo.default_branch or "HEAD",
                url=repo.url or None,
            )
            jobs.append(
                await queue_call(
                    self.queue,
                    self.queue.enqueue,
                    JobType.OBSERVE_REPO,
                    {"repo_key": repo.repo_key, "source": source},
                )
            )
        logger.info("observations_enqueued", count=len(jobs))
        return jobs

    def get_job(self, job_id: str) -> Job:
        """Get a job by id.

        Raises:
            NotFoundError: If no job has this id
        """
        job = self.queue.get(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 100,
    ) -> List[Job]:
        """List jobs in enqueue order with optional filtering."""
        jobs = self.queue.list()
        if status is not None:
            jobs = [job for job in jobs if job.status == status]
        if job_type is not None:
            jobs = [job for job in jobs if job.type == job_type]
        return jobs[:limit]

    def metrics_snapshot(self) -> Dict[str, int]:
        """Dispatch counters read from the queue, so every worker sharing it counts."""
        return self.queue.activity()


async def observe_periodically(
    pipeline: PipelineService, interval: float, stop: asyncio.Event
) -> None:
    """Enqueue a round of observations every ``interval`` seconds until ``stop`` is set.

    A failed round is logged and the schedule carries on.
    """
    logger.info("observe_schedule_started", interval=interval)
    while not stop.is_set():
        try:
            await pipeline.enqueue_observations()
        except Unit09Error as e:
            logger.error("observe_round_failed", error=e.message, error_code=e.code)
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    logger.info("observe_schedule_stopped")
