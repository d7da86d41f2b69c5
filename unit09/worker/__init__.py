"""
Pipeline Worker - dispatches queued jobs through stage handlers.

Usage:
    python -m unit09.worker

Components:
    - jobs: Job types, tagged-union payloads and lifecycle
    - queue / sql_queue: Job queue contract, in-memory and SQL backends
    - stages: Pipeline stage interface (StubStages for v0)
    - handlers: Handler registry, one handler per job type
    - metrics: Started/completed/failed/active counters
    - loop: Tick-driven, concurrency-bounded worker loop
    - pipeline: Caller-facing PipelineService, backend factories and the
      periodic observation schedule
"""

from .handlers import HandlerRegistry, JobContext, default_registry
from .jobs import (
    Job,
    JobPayload,
    JobResult,
    JobStatus,
    JobType,
    PipelineSource,
    parse_payload,
)
from .loop import WorkerLoop, run_worker
from .metrics import Counter, Gauge, WorkerMetrics
from .pipeline import PipelineService, create_job_queue, create_ledger, observe_periodically
from .queue import InMemoryJobQueue, JobQueue, queue_call, summarize_activity
from .sql_queue import SqlJobQueue
from .stages import Observation, PipelineStages, StubStages, get_stages

__all__ = [
    # Jobs
    "Job",
    "JobPayload",
    "JobResult",
    "JobStatus",
    "JobType",
    "PipelineSource",
    "parse_payload",
    # Queues
    "JobQueue",
    "InMemoryJobQueue",
    "SqlJobQueue",
    "queue_call",
    "summarize_activity",
    # Stages
    "Observation",
    "PipelineStages",
    "StubStages",
    "get_stages",
    # Handlers
    "HandlerRegistry",
    "JobContext",
    "default_registry",
    # Metrics
    "Counter",
    "Gauge",
    "WorkerMetrics",
    # Loop
    "WorkerLoop",
    "run_worker",
    # Pipeline
    "PipelineService",
    "create_job_queue",
    "create_ledger",
    "observe_periodically",
]
