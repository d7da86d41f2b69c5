"""
Pipeline Worker Loop - dispatches queued jobs to stage handlers.

Flow, once per tick:
1. Gate: do nothing while active jobs >= the concurrency ceiling
2. Pick: ask the queue for the oldest pending or retryable job
3. Resolve: look up the handler; a job with none fails terminally
4. Start: mark the job running, count it, schedule the handler as a task
5. Settle (in the task): mark completed or failed, release the slot

A tick never awaits a handler, so jobs run concurrently with later ticks,
and at most one job starts per tick. Calls into a blocking queue backend run
in a worker thread so in-flight handlers keep making progress.
"""

from __future__ import annotations

import asyncio
import signal
import uuid
from typing import Optional, Set

import structlog

from ..config import get_settings
from ..errors import NoHandlerError, Unit09Error
from .handlers import Handler, HandlerRegistry, JobContext, default_registry
from .jobs import Job, JobResult
from .metrics import WorkerMetrics
from .queue import JobQueue, queue_call
from .stages import get_stages

logger = structlog.get_logger()


class WorkerLoop:
    """Tick-driven, concurrency-bounded job dispatcher."""

    def __init__(
        self,
        queue: JobQueue,
        registry: Optional[HandlerRegistry] = None,
        context: Optional[JobContext] = None,
        metrics: Optional[WorkerMetrics] = None,
        poll_interval: Optional[float] = None,
        max_concurrent_jobs: Optional[int] = None,
        job_timeout: Optional[float] = None,
    ):
        """Initialize worker loop.

        Args:
            queue: Job queue to pull from
            registry: Handlers by job type (default: all built-in handlers)
            context: Collaborators passed to handlers (default: stub stages)
            metrics: Metrics collector (default: a fresh one)
            poll_interval: Seconds between ticks (default from config)
            max_concurrent_jobs: Ceiling on jobs in flight (default from config)
            job_timeout: Seconds one handler invocation may take (default from
                config; None disables the deadline)
        """
        self.settings = get_settings()
        self.queue = queue
        self.registry = registry or default_registry()
        self.context = context or JobContext(stages=get_stages(self.settings.worker_stages))
        self.metrics = metrics or WorkerMetrics()
        self.poll_interval = poll_interval or self.settings.worker_poll_interval
        self.max_concurrent_jobs = max_concurrent_jobs or self.settings.worker_max_concurrency
        self.job_timeout = (
            job_timeout if job_timeout is not None else self.settings.job_timeout_seconds
        )

        self.active = 0
        self.running = False
        self.worker_id = f"worker-{uuid.uuid4().hex[:8]}"
        self._tasks: Set[asyncio.Task] = set()
        self._stop_event: Optional[asyncio.Event] = None

        logger.info(
            "worker_initialized",
            worker_id=self.worker_id,
            stages=self.context.stages.name,
            poll_interval=self.poll_interval,
            max_concurrent_jobs=self.max_concurrent_jobs,
        )

    async def tick(self) -> Optional[Job]:
        """Make one dispatch decision.

        Returns the dispatched job, or None when nothing was started.
        """
        if self.active >= self.max_concurrent_jobs:
            return None

        job = await queue_call(self.queue, self.queue.next)
        if job is None:
            return None

        handler = self.registry.get(job.type)
        if handler is None:
            error = NoHandlerError(job.type.value)
            logger.error(
                "job_no_handler",
                job_id=job.id,
                job_type=job.type.value,
                worker_id=self.worker_id,
                error=error.message,
            )
            await queue_call(
                self.queue, self.queue.mark_failed, job, error.message, terminal=True
            )
            return None

        job = await queue_call(self.queue, self.queue.mark_started, job)
        self.active += 1
        self.metrics.jobs_started.inc()
        self.metrics.jobs_active.set(self.active)

        logger.info(
            "job_dispatched",
            job_id=job.id,
            job_type=job.type.value,
            worker_id=self.worker_id,
            attempt=job.attempts + 1,
        )

        task = asyncio.get_running_loop().create_task(self._execute(job, handler))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    async def _invoke(self, job: Job, handler: Handler) -> JobResult:
        invocation = handler(job, self.context)
        if self.job_timeout:
            return await asyncio.wait_for(invocation, timeout=self.job_timeout)
        return await invocation

    async def _execute(self, job: Job, handler: Handler) -> None:
        log = logger.bind(job_id=job.id, job_type=job.type.value, worker_id=self.worker_id)
        try:
            try:
                result = await self._invoke(job, handler)
            except asyncio.TimeoutError:
                await self._record_failure(job, f"Job timed out after {self.job_timeout}s", log)
                return
            except Exception as e:
                log.error("job_handler_raised", error=str(e), exc_info=True)
                await self._record_failure(job, str(e) or type(e).__name__, log)
                return

            if not result.success:
                await self._record_failure(job, result.error or "Handler reported failure", log)
                return

            try:
                await queue_call(self.queue, self.queue.mark_completed, job, result.to_dict())
            except Unit09Error as e:
                log.error("job_completion_not_recorded", error=e.message)
                return
            self.metrics.jobs_completed.inc()
            log.info("job_completed")
        finally:
            self.active -= 1
            self.metrics.jobs_active.set(self.active)

    async def _record_failure(self, job: Job, error: str, log) -> None:
        self.metrics.jobs_failed.inc()
        try:
            job = await queue_call(self.queue, self.queue.mark_failed, job, error)
        except Unit09Error as e:
            log.error("job_failure_not_recorded", error=e.message, cause=error)
            return
        log.warning(
            "job_failed",
            error=error,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            status=job.status.value,
        )

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight job to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def run(self) -> None:
        """Tick every poll_interval seconds until stopped, then drain."""
        self.running = True
        self._stop_event = asyncio.Event()
        logger.info("worker_started", worker_id=self.worker_id)

        try:
            while self.running:
                try:
                    await self.tick()
                except Exception:
                    logger.exception("worker_tick_failed", worker_id=self.worker_id)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.drain()
            logger.info("worker_stopped", worker_id=self.worker_id, **self.metrics.snapshot())

    def stop(self) -> None:
        """Stop ticking. Jobs already in flight still run to completion."""
        logger.info("worker_stopping", worker_id=self.worker_id)
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()


def run_worker(
    stages_type: Optional[str] = None,
    poll_interval: Optional[float] = None,
    max_concurrent_jobs: Optional[int] = None,
    observe_interval: Optional[float] = None,
) -> None:
    """Run the worker loop until SIGINT or SIGTERM.

    Args:
        stages_type: Stage backend to use (default from config)
        poll_interval: Seconds between ticks
        max_concurrent_jobs: Ceiling on jobs in flight
        observe_interval: Seconds between periodic observation rounds
            (default from config; None disables the schedule)
    """
    from ..logging_config import configure_logging
    from .pipeline import PipelineService, create_job_queue, create_ledger, observe_periodically

    settings = get_settings()
    configure_logging(settings)
    observe_interval = observe_interval or settings.observe_interval_seconds

    async def main() -> None:
        ledger = create_ledger(settings)
        queue = create_job_queue(settings)
        context = JobContext(
            stages=get_stages(stages_type or settings.worker_stages),
            ledger=ledger,
        )
        worker = WorkerLoop(
            queue=queue,
            context=context,
            poll_interval=poll_interval,
            max_concurrent_jobs=max_concurrent_jobs,
        )

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, worker.stop)

        stop_observing = asyncio.Event()
        scheduler = None
        if observe_interval:
            scheduler = loop.create_task(
                observe_periodically(
                    PipelineService(queue, ledger=ledger), observe_interval, stop_observing
                )
            )

        try:
            await worker.run()
        finally:
            stop_observing.set()
            if scheduler is not None:
                await scheduler

    asyncio.run(main())
