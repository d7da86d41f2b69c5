"""
Ledger Service Layer.

Register/update/list operations for repositories, modules and forks over a
RecordStore, plus the lifecycle and metrics bookkeeping each write implies.
Each service class handles one entity kind; ``Ledger`` wires them together
over a single store. Writes to repositories and modules are refused while
the Config singleton has is_active switched off.

Entity creation goes through ``create_if_absent``, so a key can only ever be
registered once even with concurrent callers.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import structlog

from ..entities import (
    MAX_FEE_BPS,
    Config,
    ConfigUpdate,
    Fork,
    ForkCreate,
    ForkFilter,
    ForkLineage,
    ForkUpdate,
    GlobalMetrics,
    LifecycleEvent,
    LifecycleEventKind,
    LifecycleSummary,
    Module,
    ModuleCreate,
    ModuleFilter,
    ModuleLink,
    ModuleUpdate,
    ModuleVersion,
    Page,
    Repo,
    RepoCreate,
    RepoFilter,
    RepoMetrics,
    RepoStats,
    RepoUpdate,
    SemanticVersion,
    SubjectType,
    VersionPart,
    apply_lifecycle_event,
    build_lineage,
    compare_semantic_version,
    utc_now,
)
from ..entities.primitives import collect_changes
from ..errors import AlreadyExistsError, NotFoundError, ValidationError
from . import projection
from .addressing import Namespace, compound_key, derive
from .store import RecordStore

logger = structlog.get_logger()


class LifecycleService:
    """Keeps one lifecycle summary per subject."""

    def __init__(self, store: RecordStore):
        self.store = store
        self._lock = asyncio.Lock()

    async def get(
        self, subject_type: SubjectType, subject_key: Optional[str] = None
    ) -> Optional[LifecycleSummary]:
        """Get the summary for a subject. The global subject has no key."""
        return await projection.fetch_lifecycle(self.store, subject_type, subject_key)

    async def record(self, event: LifecycleEvent) -> LifecycleSummary:
        """Apply an event to its subject's summary, creating it if needed."""
        address = projection.lifecycle_address(event.subject_type, event.subject_key)
        async with self._lock:
            current = await projection.fetch(self.store, address)
            if current is None:
                summary = apply_lifecycle_event(LifecycleSummary.start(event), event)
                record = projection.to_record(summary)
                if await self.store.create_if_absent(address, record):
                    return summary
                current = await projection.fetch(self.store, address)

            summary = apply_lifecycle_event(current, event)
            await self.store.update(address, projection.to_record(summary))
            return summary

    async def emit(
        self,
        kind: LifecycleEventKind,
        subject_type: SubjectType,
        subject_key: Optional[str] = None,
        message: str = "",
        timestamp: Optional[datetime] = None,
        error_code: Optional[str] = None,
    ) -> LifecycleSummary:
        event = LifecycleEvent(
            kind=kind,
            subject_type=subject_type,
            subject_key=subject_key,
            message=message,
            timestamp=timestamp or utc_now(),
            error_code=error_code,
        )
        return await self.record(event)


class ConfigService:
    """The deployment-wide Config singleton and its write switch."""

    def __init__(self, store: RecordStore):
        self.store = store
        self._lock = asyncio.Lock()

    async def get(self) -> Config:
        """Get the config, or the defaults if it was never written."""
        config = await projection.fetch_config(self.store)
        return config or Config()

    async def set(self, update: ConfigUpdate) -> Config:
        """Apply the provided fields. Unset fields keep their value.

        Raises:
            ValidationError: If fee_bps exceeds MAX_FEE_BPS or
                max_modules_per_repo is zero
        """
        changes = collect_changes(update)
        fee_bps = changes.get("fee_bps")
        if fee_bps is not None and not 0 <= fee_bps <= MAX_FEE_BPS:
            raise ValidationError(
                f"fee_bps must be between 0 and {MAX_FEE_BPS}", {"fee_bps": fee_bps}
            )
        max_modules = changes.get("max_modules_per_repo")
        if max_modules is not None and max_modules < 1:
            raise ValidationError(
                "max_modules_per_repo must be at least 1",
                {"max_modules_per_repo": max_modules},
            )

        address = derive(Namespace.CONFIG)
        async with self._lock:
            current = await self.get()
            if not changes:
                return current
            changes["updated_at"] = utc_now()
            updated, partial = projection.merge_update(current, changes)
            if not await self.store.create_if_absent(address, projection.to_record(updated)):
                await self.store.update(address, partial)

        logger.info("config_updated", fields=sorted(partial))
        return updated

    async def assert_active(self) -> Config:
        """Raise ValidationError when ledger writes are switched off."""
        config = await self.get()
        if not config.is_active:
            raise ValidationError("Ledger writes are disabled by config")
        return config


class MetricsService:
    """Global and per-repository counters.

    Counters only grow. Every read-modify-write runs under one lock so two
    concurrent increments never lose an update.
    """

    def __init__(self, store: RecordStore, lifecycle: LifecycleService):
        self.store = store
        self.lifecycle = lifecycle
        self._lock = asyncio.Lock()

    async def get_global(self) -> GlobalMetrics:
        """Get deployment-wide totals (all zero before the first write)."""
        metrics = await projection.fetch_global_metrics(self.store)
        return metrics or GlobalMetrics()

    async def get_repo(self, repo_key: str) -> RepoMetrics:
        """Get totals for one repository."""
        metrics = await projection.fetch_repo_metrics(self.store, repo_key)
        return metrics or RepoMetrics(repo_key=repo_key)

    @staticmethod
    def _check_deltas(deltas: Dict[str, int]) -> None:
        negative = {name: delta for name, delta in deltas.items() if delta < 0}
        if negative:
            raise ValidationError("Metric counters cannot decrease", negative)

    async def _write(self, namespace: Namespace, key: Optional[str], record: Dict[str, Any]) -> None:
        address = derive(namespace, key)
        if not await self.store.create_if_absent(address, record):
            await self.store.update(address, record)

    async def increment(
        self, last_observation_at: Optional[datetime] = None, **deltas: int
    ) -> GlobalMetrics:
        """Add non-negative deltas to global counters, e.g. ``total_repos=1``."""
        self._check_deltas(deltas)
        async with self._lock:
            current = await self.get_global()
            changes: Dict[str, Any] = {
                name: getattr(current, name) + delta for name, delta in deltas.items()
            }
            if last_observation_at is not None:
                previous = current.last_observation_at
                if previous is None or last_observation_at > previous:
                    changes["last_observation_at"] = last_observation_at
            updated = current.model_copy(update=changes)
            await self._write(Namespace.METRICS, None, projection.to_record(updated))
        return updated

    async def increment_repo(self, repo_key: str, **deltas: int) -> RepoMetrics:
        """Add non-negative deltas to a repository's counters."""
        self._check_deltas(deltas)
        async with self._lock:
            current = await self.get_repo(repo_key)
            updated = current.model_copy(
                update={name: getattr(current, name) + delta for name, delta in deltas.items()}
            )
            await self._write(Namespace.REPO_METRICS, repo_key, projection.to_record(updated))
        return updated

    async def record_observation(
        self,
        repo_key: str,
        lines_of_code: int,
        files_processed: int,
        observed_at: Optional[datetime] = None,
    ) -> RepoMetrics:
        """Record one completed observation of a repository.

        Updates the global and per-repo counters, the repository's stats and
        the lifecycle summaries of both the repository and the deployment.

        Raises:
            NotFoundError: If the repository does not exist
            ValidationError: If a count is negative
        """
        self._check_deltas({"lines_of_code": lines_of_code, "files_processed": files_processed})
        repo = await projection.fetch_repo(self.store, repo_key)
        if repo is None:
            raise NotFoundError("repo", repo_key)

        observed_at = observed_at or utc_now()
        await self.increment(
            last_observation_at=observed_at,
            total_observations=1,
            total_lines_of_code=lines_of_code,
            total_files_processed=files_processed,
        )
        repo_metrics = await self.increment_repo(
            repo_key,
            observations=1,
            lines_of_code=lines_of_code,
            files_processed=files_processed,
        )

        stats = (repo.stats or RepoStats()).model_copy(
            update={
                "files": files_processed,
                "lines_of_code": lines_of_code,
                "last_observation_at": observed_at,
            }
        )
        await self.store.update(
            derive(Namespace.REPO, repo_key),
            {"stats": stats.model_dump(mode="json")},
        )

        for subject_type, subject_key in ((SubjectType.REPO, repo_key), (SubjectType.GLOBAL, None)):
            await self.lifecycle.emit(
                LifecycleEventKind.OBSERVATION_COMPLETED,
                subject_type,
                subject_key,
                timestamp=observed_at,
            )

        logger.info(
            "observation_recorded",
            repo_key=repo_key,
            lines_of_code=lines_of_code,
            files_processed=files_processed,
        )
        return repo_metrics


class RepoService:
    """Service for managing repositories."""

    def __init__(
        self,
        store: RecordStore,
        config: ConfigService,
        metrics: MetricsService,
        lifecycle: LifecycleService,
    ):
        self.store = store
        self.config = config
        self.metrics = metrics
        self.lifecycle = lifecycle

    async def register(self, data: RepoCreate) -> Repo:
        """Register a new repository.

        Raises:
            InvalidKeyError: If the repo key is malformed
            ValidationError: If ledger writes are disabled
            AlreadyExistsError: If the key is already registered
        """
        address = derive(Namespace.REPO, data.repo_key)
        await self.config.assert_active()
        now = utc_now()
        repo = Repo(**data.model_dump(), created_at=now, updated_at=now)

        if not await self.store.create_if_absent(address, projection.to_record(repo)):
            raise AlreadyExistsError("repo", data.repo_key)

        await self.metrics.increment(total_repos=1)
        await self.lifecycle.emit(
            LifecycleEventKind.REPO_CREATED, SubjectType.REPO, repo.repo_key, timestamp=now
        )
        logger.info("repo_registered", repo_key=repo.repo_key, name=repo.name)
        return repo

    async def get(self, repo_key: str) -> Optional[Repo]:
        """Get a repository by key."""
        return await projection.fetch_repo(self.store, repo_key)

    async def require(self, repo_key: str) -> Repo:
        repo = await self.get(repo_key)
        if repo is None:
            raise NotFoundError("repo", repo_key)
        return repo

    async def update(self, repo_key: str, update: RepoUpdate) -> Repo:
        """Apply a partial update. An update with no changes writes nothing."""
        repo = await self.require(repo_key)
        changes = collect_changes(update)
        if not changes:
            return repo
        await self.config.assert_active()

        changes["updated_at"] = utc_now()
        updated, partial = projection.merge_update(repo, changes)
        if not await self.store.update(derive(Namespace.REPO, repo_key), partial):
            raise NotFoundError("repo", repo_key)

        await self.lifecycle.emit(
            LifecycleEventKind.REPO_UPDATED,
            SubjectType.REPO,
            repo_key,
            timestamp=changes["updated_at"],
        )
        logger.info("repo_updated", repo_key=repo_key, fields=sorted(partial))
        return updated

    async def list(self, filter: Optional[RepoFilter] = None) -> Page[Repo]:
        """List repositories."""
        return await projection.list_repos(self.store, filter)

    async def list_observable(self) -> List[Repo]:
        """Active repositories that allow observation."""
        page = await self.list(RepoFilter(active_only=True, limit=1000))
        return [repo for repo in page.items if repo.allow_observation]


class ModuleService:
    """Service for managing modules, their version history and repo links."""

    def __init__(
        self,
        store: RecordStore,
        config: ConfigService,
        repos: RepoService,
        metrics: MetricsService,
        lifecycle: LifecycleService,
    ):
        self.store = store
        self.config = config
        self.repos = repos
        self.metrics = metrics
        self.lifecycle = lifecycle

    async def register(self, data: ModuleCreate) -> Module:
        """Register a module under an existing repository.

        Raises:
            NotFoundError: If the owning repository does not exist
            ValidationError: If ledger writes are disabled or the repository
                already holds max_modules_per_repo modules
            AlreadyExistsError: If the module key is already registered
        """
        address = derive(Namespace.MODULE, data.module_key)
        config = await self.config.assert_active()
        await self.repos.require(data.repo_key)

        repo_metrics = await self.metrics.get_repo(data.repo_key)
        if repo_metrics.modules >= config.max_modules_per_repo:
            raise ValidationError(
                f"Repo {data.repo_key} already has {repo_metrics.modules} modules",
                {"repo_key": data.repo_key, "limit": config.max_modules_per_repo},
            )

        now = utc_now()
        fields = data.model_dump(exclude={"version"})
        module = Module(**fields, current_version=data.version, created_at=now, updated_at=now)

        if not await self.store.create_if_absent(address, projection.to_record(module)):
            raise AlreadyExistsError("module", data.module_key)

        await self._snapshot(module, now)
        await self.metrics.increment(total_modules=1)
        await self.metrics.increment_repo(module.repo_key, modules=1)
        await self.lifecycle.emit(
            LifecycleEventKind.MODULE_REGISTERED,
            SubjectType.MODULE,
            module.module_key,
            timestamp=now,
        )
        logger.info(
            "module_registered",
            module_key=module.module_key,
            repo_key=module.repo_key,
            kind=module.kind.value,
        )
        return module

    async def get(self, module_key: str) -> Optional[Module]:
        """Get a module by key."""
        return await projection.fetch_module(self.store, module_key)

    async def require(self, module_key: str) -> Module:
        module = await self.get(module_key)
        if module is None:
            raise NotFoundError("module", module_key)
        return module

    async def _apply(self, module: Module, changes: Dict[str, Any]) -> Module:
        await self.config.assert_active()
        changes["updated_at"] = utc_now()
        updated, partial = projection.merge_update(module, changes)
        if not await self.store.update(derive(Namespace.MODULE, module.module_key), partial):
            raise NotFoundError("module", module.module_key)
        await self.lifecycle.emit(
            LifecycleEventKind.MODULE_UPDATED,
            SubjectType.MODULE,
            module.module_key,
            timestamp=changes["updated_at"],
        )
        return updated

    async def _snapshot(self, module: Module, published_at: datetime) -> ModuleVersion:
        # Versions only move forward, so each one is written exactly once.
        snapshot = ModuleVersion(
            module_key=module.module_key,
            version=module.current_version,
            metadata_uri=module.metadata_uri,
            created_at=published_at,
        )
        key = compound_key(module.module_key, *module.current_version)
        if not await self.store.create_if_absent(
            derive(Namespace.MODULE_VERSION, key), projection.to_record(snapshot)
        ):
            raise AlreadyExistsError(
                "module version", f"{module.module_key}@{module.current_version.format()}"
            )
        return snapshot

    async def update(self, module_key: str, update: ModuleUpdate) -> Module:
        """Apply a partial update. Versions are changed with bump/set only."""
        module = await self.require(module_key)
        changes = collect_changes(update)
        if not changes:
            return module
        return await self._apply(module, changes)

    async def bump_version(self, module_key: str, part: Union[VersionPart, str]) -> Module:
        """Bump the current version by major, minor or patch."""
        module = await self.require(module_key)
        version = module.current_version.bump(part)
        updated = await self._apply(module, {"current_version": version})
        await self._snapshot(updated, updated.updated_at)
        logger.info(
            "module_version_bumped",
            module_key=module_key,
            version=version.format(),
        )
        return updated

    async def set_version(
        self, module_key: str, version: Union[SemanticVersion, str]
    ) -> Module:
        """Set the current version.

        Raises:
            ValidationError: If the version is malformed or lower than the
                current one
        """
        module = await self.require(module_key)
        if isinstance(version, str):
            parsed = SemanticVersion.parse(version)
            if parsed is None:
                raise ValidationError(f"Malformed semantic version: {version!r}")
            version = parsed
        else:
            version = SemanticVersion(*version)

        order = compare_semantic_version(version, module.current_version)
        if order < 0:
            raise ValidationError(
                f"Version {version.format()} is lower than current "
                f"{module.current_version.format()}",
                {"module_key": module_key},
            )
        if order == 0:
            return module
        updated = await self._apply(module, {"current_version": version})
        await self._snapshot(updated, updated.updated_at)
        return updated

    async def versions(self, module_key: str) -> List[ModuleVersion]:
        """Every version the module has published, oldest first."""
        await self.require(module_key)
        return await projection.list_module_versions(self.store, module_key)

    async def link(
        self,
        module_key: str,
        repo_key: str,
        is_primary: bool = False,
        notes: str = "",
    ) -> ModuleLink:
        """Link a module to a repository that uses it.

        Linking the same pair again refreshes is_primary and notes in place.

        Raises:
            NotFoundError: If the module or repository does not exist
            ValidationError: If ledger writes are disabled or the repository
                is inactive
        """
        await self.config.assert_active()
        await self.require(module_key)
        repo = await self.repos.require(repo_key)
        if not repo.is_active:
            raise ValidationError(f"Repo {repo_key} is inactive", {"repo_key": repo_key})

        address = derive(Namespace.MODULE_LINK, compound_key(module_key, repo_key))
        now = utc_now()
        link = ModuleLink(
            module_key=module_key,
            repo_key=repo_key,
            is_primary=is_primary,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        if not await self.store.create_if_absent(address, projection.to_record(link)):
            existing = await projection.fetch(self.store, address)
            link = existing.model_copy(
                update={"is_primary": is_primary, "notes": notes, "updated_at": now}
            )
            await self.store.update(
                address,
                {
                    "is_primary": is_primary,
                    "notes": notes,
                    "updated_at": projection.to_record(link)["updated_at"],
                },
            )

        logger.info(
            "module_linked",
            module_key=module_key,
            repo_key=repo_key,
            is_primary=is_primary,
        )
        return link

    async def links(
        self, module_key: Optional[str] = None, repo_key: Optional[str] = None
    ) -> List[ModuleLink]:
        """List module-repo links by module, by repository, or all of them."""
        return await projection.list_module_links(self.store, module_key, repo_key)

    async def list(self, filter: Optional[ModuleFilter] = None) -> Page[Module]:
        """List modules."""
        return await projection.list_modules(self.store, filter)


class ForkService:
    """Service for managing forks and their lineage."""

    def __init__(
        self, store: RecordStore, metrics: MetricsService, lifecycle: LifecycleService
    ):
        self.store = store
        self.metrics = metrics
        self.lifecycle = lifecycle

    async def create(self, data: ForkCreate) -> Fork:
        """Create a fork, deriving depth and root flag from its parent.

        Raises:
            NotFoundError: If the parent fork does not exist
            AlreadyExistsError: If a record already exists at the fork's
                address. The stored record is left untouched.
        """
        address = derive(Namespace.FORK, data.fork_key)

        depth = 0
        if data.parent is not None:
            parent = await self.get(data.parent)
            if parent is None:
                raise NotFoundError("fork", data.parent)
            depth = parent.depth + 1

        now = utc_now()
        fork = Fork(
            **data.model_dump(),
            depth=depth,
            is_root=data.parent is None,
            created_at=now,
            updated_at=now,
        )

        if not await self.store.create_if_absent(address, projection.to_record(fork)):
            raise AlreadyExistsError("fork", data.fork_key)

        await self.metrics.increment(total_forks=1)
        await self.lifecycle.emit(
            LifecycleEventKind.FORK_CREATED, SubjectType.FORK, fork.fork_key, timestamp=now
        )
        logger.info(
            "fork_created",
            fork_key=fork.fork_key,
            parent=fork.parent,
            depth=fork.depth,
        )
        return fork

    async def get(self, fork_key: str) -> Optional[Fork]:
        """Get a fork by key."""
        return await projection.fetch_fork(self.store, fork_key)

    async def require(self, fork_key: str) -> Fork:
        fork = await self.get(fork_key)
        if fork is None:
            raise NotFoundError("fork", fork_key)
        return fork

    async def update(self, fork_key: str, update: ForkUpdate) -> Fork:
        """Apply a partial update, field by field."""
        fork = await self.require(fork_key)
        changes = collect_changes(update)
        if not changes:
            return fork

        changes["updated_at"] = utc_now()
        updated, partial = projection.merge_update(fork, changes)
        if not await self.store.update(derive(Namespace.FORK, fork_key), partial):
            raise NotFoundError("fork", fork_key)

        await self.lifecycle.emit(
            LifecycleEventKind.FORK_UPDATED,
            SubjectType.FORK,
            fork_key,
            timestamp=changes["updated_at"],
        )
        return updated

    async def list(self, filter: Optional[ForkFilter] = None) -> Page[Fork]:
        """List forks."""
        return await projection.list_forks(self.store, filter)

    async def lineage(self, fork_key: str) -> ForkLineage:
        """Walk parent references up to the root.

        Raises:
            NotFoundError: If the fork or any ancestor is missing
            ValidationError: If the parent chain loops
        """
        fork = await self.require(fork_key)
        ancestors: List[Fork] = []
        seen = {fork.fork_key}
        current = fork
        while current.parent is not None:
            if current.parent in seen:
                raise ValidationError(
                    f"Fork lineage of {fork_key} loops at {current.parent}",
                    {"fork_key": fork_key},
                )
            seen.add(current.parent)
            current = await self.require(current.parent)
            ancestors.append(current)
        return build_lineage(fork, ancestors)


class Ledger:
    """All ledger services over one record store."""

    def __init__(self, store: RecordStore):
        self.store = store
        self.config = ConfigService(store)
        self.lifecycle = LifecycleService(store)
        self.metrics = MetricsService(store, self.lifecycle)
        self.repos = RepoService(store, self.config, self.metrics, self.lifecycle)
        self.modules = ModuleService(
            store, self.config, self.repos, self.metrics, self.lifecycle
        )
        self.forks = ForkService(store, self.metrics, self.lifecycle)
