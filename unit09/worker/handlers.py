"""
Stage handlers: one per job type.

A handler chains pipeline stages, each stage's output feeding the next, and
reports a JobResult. Handlers never swallow a stage failure: unexpected
exceptions are re-raised as StageFailure naming the stage, domain errors
propagate unchanged, and the worker loop records the failed attempt.

Handlers read only their own job's payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from ..entities import LifecycleEventKind, SubjectType
from ..errors import StageFailure, Unit09Error
from .jobs import Job, JobResult, JobType
from .stages import PipelineStages, Stage

logger = structlog.get_logger()


@dataclass
class JobContext:
    """Collaborators shared by all handlers.

    ``ledger`` is optional; without it observations are not recorded.
    """

    stages: PipelineStages
    ledger: Optional[Any] = None


Handler = Callable[[Job, JobContext], Awaitable[JobResult]]


class HandlerRegistry:
    """Maps job types to handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[JobType, Handler] = {}

    def register(self, job_type: Union[JobType, str]) -> Callable[[Handler], Handler]:
        """Decorator registering a handler for ``job_type``.

        A later registration for the same type replaces the earlier one.
        """

        def decorator(handler: Handler) -> Handler:
            self.add(job_type, handler)
            return handler

        return decorator

    def add(self, job_type: Union[JobType, str], handler: Handler) -> None:
        self._handlers[JobType(job_type)] = handler

    def get(self, job_type: Union[JobType, str]) -> Optional[Handler]:
        return self._handlers.get(JobType(job_type))

    def job_types(self) -> List[JobType]:
        return list(self._handlers)

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers


async def run_stage(log, stage: str, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
    """Await one stage call, naming the stage on failure."""
    log.debug("stage_started", stage=stage)
    try:
        result = await func(*args)
    except Unit09Error:
        raise
    except Exception as e:
        raise StageFailure(stage, str(e)) from e
    log.debug("stage_completed", stage=stage)
    return result


def _job_logger(job: Job):
    log = logger.bind(job_id=job.id, job_type=job.type.value, repo_key=job.payload.repo_key)
    fork_id = getattr(job.payload, "fork_id", None)
    if fork_id is not None:
        log = log.bind(fork_id=fork_id)
    log.info("job_handler_started")
    return log


async def _analyze(log, ctx: JobContext, job: Job):
    stages = ctx.stages
    project = await run_stage(log, Stage.PARSE, stages.parse, job.payload.source)
    return await run_stage(log, Stage.BUILD_GRAPH, stages.build_graph, project)


async def _decompose(log, ctx: JobContext, job: Job):
    graph = await _analyze(log, ctx, job)
    modules = await run_stage(log, Stage.DECOMPOSE, ctx.stages.decompose, graph)
    return graph, modules


# =============================================================================
# Handlers
# =============================================================================


async def observe_repo(job: Job, ctx: JobContext) -> JobResult:
    log = _job_logger(job)
    repo_key = job.payload.repo_key
    ledger = ctx.ledger

    if ledger is None:
        observation = await run_stage(
            log, Stage.OBSERVE, ctx.stages.observe, job.payload.source
        )
        return JobResult(success=True, output={"observation": observation.to_dict()})

    await ledger.repos.require(repo_key)
    await ledger.lifecycle.emit(
        LifecycleEventKind.OBSERVATION_STARTED, SubjectType.REPO, repo_key
    )
    try:
        observation = await run_stage(
            log, Stage.OBSERVE, ctx.stages.observe, job.payload.source
        )
        await ledger.metrics.record_observation(
            repo_key,
            lines_of_code=observation.lines_of_code,
            files_processed=observation.files,
        )
    except Unit09Error as e:
        log.warning("observation_failed", error_code=e.code, error=e.message)
        await ledger.lifecycle.emit(
            LifecycleEventKind.ERROR,
            SubjectType.REPO,
            repo_key,
            message=e.message,
            error_code=e.code,
        )
        raise

    return JobResult(success=True, output={"observation": observation.to_dict()})


async def analyze_repo(job: Job, ctx: JobContext) -> JobResult:
    log = _job_logger(job)
    graph = await _analyze(log, ctx, job)
    return JobResult(success=True, output={"graph": graph.to_dict()})


async def decompose(job: Job, ctx: JobContext) -> JobResult:
    log = _job_logger(job)
    _, modules = await _decompose(log, ctx, job)
    return JobResult(success=True, output={"modules": [m.to_dict() for m in modules]})


async def generate_modules(job: Job, ctx: JobContext) -> JobResult:
    log = _job_logger(job)
    _, modules = await _decompose(log, ctx, job)
    artifacts = await run_stage(log, Stage.GENERATE, ctx.stages.generate_artifacts, modules)
    return JobResult(success=True, output={"artifacts": [a.to_dict() for a in artifacts]})


async def validate_modules(job: Job, ctx: JobContext) -> JobResult:
    log = _job_logger(job)
    graph, modules = await _decompose(log, ctx, job)
    report = await run_stage(log, Stage.VALIDATE, ctx.stages.validate, modules, graph)
    return JobResult(success=True, output={"validation": report.to_dict()})


async def sync_on_chain(job: Job, ctx: JobContext) -> JobResult:
    log = _job_logger(job)
    result = await run_stage(log, Stage.SYNC, ctx.stages.sync_ledger, job.payload.source)
    return JobResult(success=True, output={"sync": result.to_dict()})


async def fork_evolution(job: Job, ctx: JobContext) -> JobResult:
    """Run the full chain for a fork: decompose, generate, then validate."""
    log = _job_logger(job)
    graph, modules = await _decompose(log, ctx, job)
    artifacts = await run_stage(log, Stage.GENERATE, ctx.stages.generate_artifacts, modules)
    report = await run_stage(log, Stage.VALIDATE, ctx.stages.validate, modules, graph)
    return JobResult(
        success=True,
        output={
            "fork_id": job.payload.fork_id,
            "modules": [m.to_dict() for m in modules],
            "artifacts": [a.to_dict() for a in artifacts],
            "validation": report.to_dict(),
        },
    )


def default_registry() -> HandlerRegistry:
    """Registry with a handler for every job type."""
    registry = HandlerRegistry()
    registry.add(JobType.OBSERVE_REPO, observe_repo)
    registry.add(JobType.ANALYZE_REPO, analyze_repo)
    registry.add(JobType.DECOMPOSE, decompose)
    registry.add(JobType.GENERATE_MODULES, generate_modules)
    registry.add(JobType.VALIDATE_MODULES, validate_modules)
    registry.add(JobType.SYNC_ON_CHAIN, sync_on_chain)
    registry.add(JobType.FORK_EVOLUTION, fork_evolution)
    return registry
