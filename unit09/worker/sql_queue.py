"""
Durable job queue over the ``jobs`` table.

Enqueue order is the autoincrement ``seq`` column. State transitions are
computed by the Job model and written back row by row, so both queue
implementations share the same lifecycle rules.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.models import JobModel
from ..errors import NotFoundError, TransportError
from .jobs import DISPATCHABLE_STATUSES, DEFAULT_MAX_ATTEMPTS, Job, JobStatus
from .queue import JobQueue

logger = structlog.get_logger()

_STATE_FIELDS = (
    "status",
    "started_at",
    "completed_at",
    "failed_at",
    "attempts",
    "result",
    "error",
)


def _row_to_job(row: JobModel) -> Job:
    return Job(
        id=row.id,
        type=row.type,
        payload=row.payload,
        status=row.status,
        created_at=row.created_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
        failed_at=row.failed_at,
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        result=row.result,
        error=row.error,
    )


def _write_state(row: JobModel, job: Job) -> None:
    for name in _STATE_FIELDS:
        value = getattr(job, name)
        if name == "status":
            value = value.value
        setattr(row, name, value)


class SqlJobQueue(JobQueue):
    """Job queue persisted through SQLAlchemy."""

    blocking = True

    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        """Initialize with a session factory.

        Args:
            session_factory: Callable returning a new Session per operation
            max_attempts: Default attempt ceiling for new jobs
        """
        super().__init__(max_attempts)
        self.session_factory = session_factory

    def enqueue(self, job_type, payload, max_attempts=None) -> Job:
        job = self.build_job(job_type, payload, max_attempts)
        db = self.session_factory()
        try:
            data = job.to_dict()
            db.add(
                JobModel(
                    id=job.id,
                    type=job.type.value,
                    payload=data["payload"],
                    status=job.status.value,
                    created_at=job.created_at,
                    attempts=job.attempts,
                    max_attempts=job.max_attempts,
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise TransportError(f"Failed to enqueue job {job.id}: {e}") from e
        finally:
            db.close()

        logger.info(
            "job_enqueued",
            job_id=job.id,
            job_type=job.type.value,
            repo_key=job.payload.repo_key,
        )
        return job

    def next(self) -> Optional[Job]:
        db = self.session_factory()
        try:
            row = db.scalars(
                select(JobModel)
                .where(JobModel.status.in_([status.value for status in DISPATCHABLE_STATUSES]))
                .order_by(JobModel.seq.asc())
                .limit(1)
            ).first()
            return _row_to_job(row) if row is not None else None
        except SQLAlchemyError as e:
            raise TransportError(f"Failed to read next job: {e}") from e
        finally:
            db.close()

    def _transition(self, job_id: str, apply: Callable[[Job], None]) -> Job:
        db = self.session_factory()
        try:
            row = db.scalars(
                select(JobModel).where(JobModel.id == job_id).with_for_update()
            ).first()
            if row is None:
                raise NotFoundError("job", job_id)
            job = _row_to_job(row)
            apply(job)
            _write_state(row, job)
            db.commit()
            return job
        except SQLAlchemyError as e:
            db.rollback()
            raise TransportError(f"Failed to update job {job_id}: {e}") from e
        finally:
            db.close()

    @staticmethod
    def _sync(target: Job, source: Job) -> Job:
        for name in _STATE_FIELDS:
            setattr(target, name, getattr(source, name))
        return target

    def mark_started(self, job: Job) -> Job:
        return self._sync(job, self._transition(job.id, lambda stored: stored.start()))

    def mark_completed(self, job: Job, result: Optional[Dict[str, Any]]) -> Job:
        return self._sync(
            job, self._transition(job.id, lambda stored: stored.complete(result))
        )

    def mark_failed(self, job: Job, error: str, terminal: bool = False) -> Job:
        return self._sync(
            job,
            self._transition(job.id, lambda stored: stored.fail(error, terminal=terminal)),
        )

    def get(self, job_id: str) -> Optional[Job]:
        db = self.session_factory()
        try:
            row = db.scalars(select(JobModel).where(JobModel.id == job_id)).first()
            return _row_to_job(row) if row is not None else None
        except SQLAlchemyError as e:
            raise TransportError(f"Failed to read job {job_id}: {e}") from e
        finally:
            db.close()

    def list(self) -> List[Job]:
        db = self.session_factory()
        try:
            rows = db.scalars(select(JobModel).order_by(JobModel.seq.asc())).all()
            return [_row_to_job(row) for row in rows]
        except SQLAlchemyError as e:
            raise TransportError(f"Failed to list jobs: {e}") from e
        finally:
            db.close()

    def activity(self) -> Dict[str, int]:
        db = self.session_factory()
        try:
            rows = db.execute(
                select(
                    JobModel.status,
                    func.count(JobModel.id),
                    func.coalesce(func.sum(JobModel.attempts), 0),
                )
                .where(JobModel.started_at.is_not(None))
                .group_by(JobModel.status)
            ).all()
        except SQLAlchemyError as e:
            raise TransportError(f"Failed to count jobs: {e}") from e
        finally:
            db.close()

        counts = {status: count for status, count, _ in rows}
        failed = sum(int(attempts) for _, _, attempts in rows)
        completed = counts.get(JobStatus.COMPLETED.value, 0)
        active = counts.get(JobStatus.RUNNING.value, 0)
        return {
            "started": failed + completed + active,
            "completed": completed,
            "failed": failed,
            "active": active,
        }
