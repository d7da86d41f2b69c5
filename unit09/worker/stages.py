"""
Pipeline stages called by job handlers.

v0: StubStages - deterministic placeholders that prove the pipeline works
v1+: Real analysis and generation backends

Design: handlers depend only on the PipelineStages interface, so a backend
can be swapped without touching the handlers or the worker loop.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from ..entities import ModuleKind, utc_now
from .jobs import PipelineSource


class Stage:
    """Stage names used in logs and StageFailure."""

    OBSERVE = "observe-code"
    PARSE = "parse-project"
    BUILD_GRAPH = "build-code-graph"
    DECOMPOSE = "decompose-modules"
    GENERATE = "generate-artifacts"
    VALIDATE = "validate-modules"
    SYNC = "sync-on-chain"


class _Serializable:
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Observation(_Serializable):
    """What an observation found in a repository at one revision."""

    repo_key: str
    revision: str
    files: int
    lines_of_code: int
    languages: List[str] = field(default_factory=list)


@dataclass
class Project(_Serializable):
    repo_key: str
    revision: str
    files: List[str] = field(default_factory=list)


@dataclass
class CodeGraph(_Serializable):
    repo_key: str
    nodes: List[str] = field(default_factory=list)
    edges: List[List[str]] = field(default_factory=list)


@dataclass
class DetectedModule(_Serializable):
    name: str
    kind: str
    path: str


@dataclass
class Artifact(_Serializable):
    module_name: str
    path: str
    content_hash: str


@dataclass
class ValidationReport(_Serializable):
    valid: bool
    issues: List[str] = field(default_factory=list)


@dataclass
class SyncResult(_Serializable):
    repo_key: str
    synced: bool
    synced_at: str


class PipelineStages(ABC):
    """Asynchronous stage functions. Any of them may raise."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def observe(self, source: PipelineSource) -> Observation:
        pass

    @abstractmethod
    async def parse(self, source: PipelineSource) -> Project:
        pass

    @abstractmethod
    async def build_graph(self, project: Project) -> CodeGraph:
        pass

    @abstractmethod
    async def decompose(self, graph: CodeGraph) -> List[DetectedModule]:
        pass

    @abstractmethod
    async def generate_artifacts(self, modules: List[DetectedModule]) -> List[Artifact]:
        pass

    @abstractmethod
    async def validate(
        self, modules: List[DetectedModule], graph: CodeGraph
    ) -> ValidationReport:
        pass

    @abstractmethod
    async def sync_ledger(self, source: PipelineSource) -> SyncResult:
        pass


class StubStages(PipelineStages):
    """Stub stages for v0.

    Output depends only on the input, so repeated runs over the same source
    produce the same results.
    """

    _FILES = ("programs/src/lib.rs", "sdk/src/index.ts", "cli/src/main.ts")

    @property
    def name(self) -> str:
        return "stub"

    async def observe(self, source: PipelineSource) -> Observation:
        seed = int(hashlib.sha256(source.repo_key.encode("utf-8")).hexdigest()[:6], 16)
        files = len(self._FILES)
        return Observation(
            repo_key=source.repo_key,
            revision=source.revision,
            files=files,
            lines_of_code=files * 100 + seed % 100,
            languages=["rust", "typescript"],
        )

    async def parse(self, source: PipelineSource) -> Project:
        return Project(
            repo_key=source.repo_key,
            revision=source.revision,
            files=list(self._FILES),
        )

    async def build_graph(self, project: Project) -> CodeGraph:
        nodes = list(project.files)
        edges = [[nodes[i], nodes[i + 1]] for i in range(len(nodes) - 1)]
        return CodeGraph(repo_key=project.repo_key, nodes=nodes, edges=edges)

    async def decompose(self, graph: CodeGraph) -> List[DetectedModule]:
        kinds = {
            "programs": ModuleKind.ANCHOR_PROGRAM,
            "sdk": ModuleKind.TYPESCRIPT_SDK,
            "cli": ModuleKind.CLI_TOOL,
        }
        modules = []
        for node in graph.nodes:
            top = node.split("/", 1)[0]
            kind = kinds.get(top, ModuleKind.OTHER)
            modules.append(DetectedModule(name=top, kind=kind.value, path=top))
        return modules

    async def generate_artifacts(self, modules: List[DetectedModule]) -> List[Artifact]:
        return [
            Artifact(
                module_name=module.name,
                path=f"artifacts/{module.name}/module.json",
                content_hash=hashlib.sha256(module.path.encode("utf-8")).hexdigest(),
            )
            for module in modules
        ]

    async def validate(
        self, modules: List[DetectedModule], graph: CodeGraph
    ) -> ValidationReport:
        known = {node.split("/", 1)[0] for node in graph.nodes}
        issues = [
            f"module {module.name} has no files in the graph"
            for module in modules
            if module.path not in known
        ]
        return ValidationReport(valid=not issues, issues=issues)

    async def sync_ledger(self, source: PipelineSource) -> SyncResult:
        return SyncResult(
            repo_key=source.repo_key,
            synced=True,
            synced_at=utc_now().isoformat(),
        )


def get_stages(stages_type: str = "stub") -> PipelineStages:
    """Factory function to get a stage backend by type.

    Raises:
        ValueError: If the backend type is not supported
    """
    if stages_type == "stub":
        return StubStages()
    else:
        raise ValueError(
            f"Unsupported stages type: {stages_type}. "
            f"Supported: stub"
        )
