"""
FastAPI application exposing pipeline jobs, entity pages and metrics.

Routes map requests onto PipelineService and Ledger calls; domain errors are
translated to HTTP status codes in one exception handler.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .config import get_settings
from .entities import (
    ForkFilter,
    ForkType,
    ModuleFilter,
    ModuleKind,
    RepoFilter,
    SourceType,
    Visibility,
)
from .entities.primitives import NO_CHANGE, normalize_tags
from .errors import (
    AlreadyExistsError,
    InvalidKeyError,
    NotFoundError,
    TransportError,
    Unit09Error,
    ValidationError,
)
from .ledger.services import Ledger
from .worker.jobs import JobStatus, JobType
from .worker.pipeline import PipelineService, create_job_queue, create_ledger

logger = structlog.get_logger()

_STATUS_CODES = {
    InvalidKeyError: 400,
    ValidationError: 400,
    NotFoundError: 404,
    AlreadyExistsError: 409,
    TransportError: 503,
}


class EnqueueJobRequest(BaseModel):
    """Request body for POST /pipeline/jobs."""

    model_config = ConfigDict(extra="forbid")

    type: JobType
    payload: Dict[str, Any] = Field(default_factory=dict)
    max_attempts: Optional[int] = Field(None, ge=1)


router = APIRouter()


def get_pipeline(request: Request) -> PipelineService:
    return request.app.state.pipeline


def get_ledger(request: Request) -> Ledger:
    return request.app.state.ledger


# =============================================================================
# Pipeline Endpoints
# =============================================================================


@router.post("/pipeline/jobs", status_code=202, tags=["pipeline"])
def enqueue_job(
    body: EnqueueJobRequest,
    pipeline: PipelineService = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Enqueue a pipeline job."""
    try:
        job = pipeline.enqueue(body.type, body.payload, max_attempts=body.max_attempts)
    except PydanticValidationError as e:
        raise HTTPException(
            status_code=400,
            detail=e.errors(include_url=False, include_context=False, include_input=False),
        ) from e
    return {"job": job.to_dict()}


@router.get("/pipeline/jobs", tags=["pipeline"])
def list_jobs(
    status: Optional[JobStatus] = None,
    type: Optional[JobType] = None,
    limit: int = Query(100, ge=1, le=1000),
    pipeline: PipelineService = Depends(get_pipeline),
) -> Dict[str, Any]:
    """List jobs in enqueue order."""
    jobs = pipeline.list_jobs(status=status, job_type=type, limit=limit)
    return {"items": [job.to_dict() for job in jobs], "next_cursor": None}


@router.get("/pipeline/jobs/{job_id}", tags=["pipeline"])
def get_job(
    job_id: str,
    pipeline: PipelineService = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Get a job by id."""
    return {"job": pipeline.get_job(job_id).to_dict()}


@router.post("/pipeline/observe", status_code=202, tags=["pipeline"])
async def enqueue_observations(
    pipeline: PipelineService = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Enqueue an observation for every active, observable repository."""
    jobs = await pipeline.enqueue_observations()
    return {"jobs": [job.to_dict() for job in jobs]}


@router.get("/pipeline/metrics", tags=["pipeline"])
def pipeline_metrics(
    pipeline: PipelineService = Depends(get_pipeline),
) -> Dict[str, int]:
    """Dispatch counters across every worker sharing the queue."""
    return pipeline.metrics_snapshot()


# =============================================================================
# Entity Endpoints
# =============================================================================


@router.get("/repos", tags=["repos"])
async def list_repos(
    search: Optional[str] = None,
    tags: Optional[str] = Query(None, description="Comma-separated; all must match"),
    visibility: Optional[Visibility] = None,
    source_type: Optional[SourceType] = None,
    active_only: bool = False,
    limit: int = Query(100, ge=1, le=1000),
    ledger: Ledger = Depends(get_ledger),
) -> Dict[str, Any]:
    """List repositories."""
    page = await ledger.repos.list(
        RepoFilter(
            search=search,
            tags=normalize_tags(tags),
            visibility=visibility,
            source_type=source_type,
            active_only=active_only,
            limit=limit,
        )
    )
    return page.model_dump(mode="json")


@router.get("/repos/{repo_key}", tags=["repos"])
async def get_repo(
    repo_key: str,
    ledger: Ledger = Depends(get_ledger),
) -> Dict[str, Any]:
    """Get a repository by key."""
    repo = await ledger.repos.require(repo_key)
    return repo.model_dump(mode="json")


@router.get("/repos/{repo_key}/modules", tags=["repos"])
async def list_repo_modules(
    repo_key: str,
    search: Optional[str] = None,
    tags: Optional[str] = Query(None, description="Comma-separated; all must match"),
    kind: Optional[ModuleKind] = None,
    active_only: bool = False,
    limit: int = Query(100, ge=1, le=1000),
    ledger: Ledger = Depends(get_ledger),
) -> Dict[str, Any]:
    """List the modules of one repository."""
    await ledger.repos.require(repo_key)
    page = await ledger.modules.list(
        ModuleFilter(
            repo_key=repo_key,
            search=search,
            tags=normalize_tags(tags),
            kind=kind,
            active_only=active_only,
            limit=limit,
        )
    )
    return page.model_dump(mode="json")


@router.get("/forks", tags=["forks"])
async def list_forks(
    parent: Optional[str] = None,
    roots_only: bool = False,
    fork_type: Optional[ForkType] = None,
    search: Optional[str] = None,
    tags: Optional[str] = Query(None, description="Comma-separated; all must match"),
    active_only: bool = False,
    limit: int = Query(100, ge=1, le=1000),
    ledger: Ledger = Depends(get_ledger),
) -> Dict[str, Any]:
    """List forks. ``roots_only`` takes precedence over ``parent``."""
    if roots_only:
        parent_filter = None
    elif parent is not None:
        parent_filter = parent
    else:
        parent_filter = NO_CHANGE

    page = await ledger.forks.list(
        ForkFilter(
            parent=parent_filter,
            fork_type=fork_type,
            search=search,
            tags=normalize_tags(tags),
            active_only=active_only,
            limit=limit,
        )
    )
    return page.model_dump(mode="json")


@router.get("/forks/{fork_key}/lineage", tags=["forks"])
async def fork_lineage(
    fork_key: str,
    ledger: Ledger = Depends(get_ledger),
) -> Dict[str, Any]:
    """Ancestor chain from the fork's root to the fork."""
    lineage = await ledger.forks.lineage(fork_key)
    return lineage.model_dump()


@router.get("/modules/{module_key}/versions", tags=["modules"])
async def module_versions(
    module_key: str,
    ledger: Ledger = Depends(get_ledger),
) -> Dict[str, Any]:
    """Published versions of a module, oldest first."""
    versions = await ledger.modules.versions(module_key)
    return {"items": [version.model_dump(mode="json") for version in versions]}


@router.get("/modules/{module_key}/links", tags=["modules"])
async def module_links(
    module_key: str,
    ledger: Ledger = Depends(get_ledger),
) -> Dict[str, Any]:
    """Repositories the module is linked to."""
    await ledger.modules.require(module_key)
    links = await ledger.modules.links(module_key=module_key)
    return {"items": [link.model_dump(mode="json") for link in links]}


@router.get("/config", tags=["stats"])
async def get_config(ledger: Ledger = Depends(get_ledger)) -> Dict[str, Any]:
    """The deployment config, or its defaults if never set."""
    config = await ledger.config.get()
    return config.model_dump(mode="json")


@router.get("/stats", tags=["stats"])
async def global_stats(ledger: Ledger = Depends(get_ledger)) -> Dict[str, Any]:
    """Global counters, as decimal strings."""
    metrics = await ledger.metrics.get_global()
    stats: Dict[str, Any] = metrics.to_json()
    stats["last_observation_at"] = (
        metrics.last_observation_at.isoformat() if metrics.last_observation_at else None
    )
    return stats


# =============================================================================
# Application
# =============================================================================


async def handle_domain_error(request: Request, exc: Unit09Error) -> JSONResponse:
    status_code = 500
    for error_type, code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(
    ledger: Optional[Ledger] = None,
    pipeline: Optional[PipelineService] = None,
) -> FastAPI:
    """Build the application.

    Backends not supplied are created from settings at startup.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting unit09 API", environment=settings.environment)
        if app.state.ledger is None:
            app.state.ledger = create_ledger(settings)
        if app.state.pipeline is None:
            app.state.pipeline = PipelineService(
                create_job_queue(settings), ledger=app.state.ledger
            )
        yield
        logger.info("Shutdown complete")

    app = FastAPI(
        title="unit09",
        description="Pipeline jobs, repositories, modules and forks",
        lifespan=lifespan,
    )
    app.state.ledger = ledger
    app.state.pipeline = pipeline
    app.add_exception_handler(Unit09Error, handle_domain_error)
    app.include_router(router)

    @app.get("/healthz", tags=["system"])
    def healthz() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    return app


app = create_app()
