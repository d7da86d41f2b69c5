"""
Account projection: raw ledger records to typed entities.

Raw records may predate fields or carry loosely typed values (tags as a
comma-separated string, versions as "1.2.3"). Projection fills the declared
defaults for anything absent and never raises for a missing record; callers
get None and treat it as "does not exist yet".
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel

from ..entities import (
    INITIAL_VERSION,
    Config,
    Fork,
    ForkFilter,
    ForkType,
    GlobalMetrics,
    LifecycleSummary,
    Module,
    ModuleFilter,
    ModuleKind,
    ModuleLink,
    ModuleVersion,
    Page,
    Repo,
    RepoFilter,
    RepoMetrics,
    SourceType,
    SubjectType,
    Visibility,
    is_no_change,
    normalize_tags,
)
from .addressing import Address, Namespace, NaturalKey, derive
from .store import Record, RecordStore

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

E = TypeVar("E", bound=BaseModel)


def to_record(entity: BaseModel) -> Record:
    """Serialize an entity into a JSON-compatible ledger record."""
    return entity.model_dump(mode="json")


def _fill_defaults(record: Record, defaults: Dict[str, Any]) -> Record:
    projected = dict(record)
    for name, default in defaults.items():
        if projected.get(name) is None:
            projected[name] = default
    return projected


def _coerce_enum(value: Any, enum_cls: Type[Enum], default: Enum) -> Enum:
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _fill_timestamps(record: Record) -> Record:
    if record.get("created_at") is None:
        record["created_at"] = EPOCH
    if record.get("updated_at") is None:
        record["updated_at"] = record["created_at"]
    return record


def project_repo(record: Record) -> Repo:
    projected = _fill_defaults(
        record,
        {
            "url": "",
            "visibility": Visibility.PUBLIC,
            "source_type": SourceType.GITHUB,
            "allow_observation": True,
            "is_active": True,
        },
    )
    projected["visibility"] = _coerce_enum(
        projected["visibility"], Visibility, Visibility.PUBLIC
    )
    projected["source_type"] = _coerce_enum(
        projected["source_type"], SourceType, SourceType.GITHUB
    )
    projected["tags"] = normalize_tags(projected.get("tags"))
    return Repo.model_validate(_fill_timestamps(projected))


def project_module(record: Record) -> Module:
    projected = _fill_defaults(
        record,
        {
            "kind": ModuleKind.OTHER,
            "is_active": True,
            "current_version": INITIAL_VERSION,
        },
    )
    projected["kind"] = _coerce_enum(projected["kind"], ModuleKind, ModuleKind.OTHER)
    projected["tags"] = normalize_tags(projected.get("tags"))
    return Module.model_validate(_fill_timestamps(projected))


def project_fork(record: Record) -> Fork:
    projected = _fill_defaults(
        record,
        {
            "fork_type": ForkType.INSTANCE,
            "depth": 0,
            "is_active": True,
        },
    )
    if projected.get("is_root") is None:
        projected["is_root"] = projected.get("parent") is None
    projected["fork_type"] = _coerce_enum(
        projected["fork_type"], ForkType, ForkType.INSTANCE
    )
    projected["tags"] = normalize_tags(projected.get("tags"))
    return Fork.model_validate(_fill_timestamps(projected))


def project_global_metrics(record: Record) -> GlobalMetrics:
    return GlobalMetrics.model_validate(record)


def project_repo_metrics(record: Record) -> RepoMetrics:
    return RepoMetrics.model_validate(record)


def project_lifecycle(record: Record) -> LifecycleSummary:
    projected = _fill_timestamps(dict(record))
    if projected.get("last_activity_at") is None:
        projected["last_activity_at"] = projected["created_at"]
    return LifecycleSummary.model_validate(projected)


def project_config(record: Record) -> Config:
    return Config.model_validate(record)


def project_module_version(record: Record) -> ModuleVersion:
    projected = dict(record)
    if projected.get("created_at") is None:
        projected["created_at"] = EPOCH
    return ModuleVersion.model_validate(projected)


def project_module_link(record: Record) -> ModuleLink:
    projected = _fill_defaults(record, {"is_primary": False, "notes": ""})
    return ModuleLink.model_validate(_fill_timestamps(projected))


_PROJECTORS: Dict[Namespace, Callable[[Record], BaseModel]] = {
    Namespace.CONFIG: project_config,
    Namespace.REPO: project_repo,
    Namespace.MODULE: project_module,
    Namespace.FORK: project_fork,
    Namespace.METRICS: project_global_metrics,
    Namespace.REPO_METRICS: project_repo_metrics,
    Namespace.LIFECYCLE: project_lifecycle,
    Namespace.REPO_LIFECYCLE: project_lifecycle,
    Namespace.MODULE_LIFECYCLE: project_lifecycle,
    Namespace.FORK_LIFECYCLE: project_lifecycle,
    Namespace.MODULE_VERSION: project_module_version,
    Namespace.MODULE_LINK: project_module_link,
}


async def fetch(store: RecordStore, address: Address) -> Optional[BaseModel]:
    """Read the record at ``address`` and project it. None if absent."""
    record = await store.get(address)
    if record is None:
        return None
    return _PROJECTORS[address.namespace](record)


async def fetch_repo(store: RecordStore, repo_key: NaturalKey) -> Optional[Repo]:
    return await fetch(store, derive(Namespace.REPO, repo_key))


async def fetch_module(store: RecordStore, module_key: NaturalKey) -> Optional[Module]:
    return await fetch(store, derive(Namespace.MODULE, module_key))


async def fetch_fork(store: RecordStore, fork_key: NaturalKey) -> Optional[Fork]:
    return await fetch(store, derive(Namespace.FORK, fork_key))


async def fetch_global_metrics(store: RecordStore) -> Optional[GlobalMetrics]:
    return await fetch(store, derive(Namespace.METRICS))


async def fetch_repo_metrics(
    store: RecordStore, repo_key: NaturalKey
) -> Optional[RepoMetrics]:
    return await fetch(store, derive(Namespace.REPO_METRICS, repo_key))


_LIFECYCLE_NAMESPACES = {
    SubjectType.REPO: Namespace.REPO_LIFECYCLE,
    SubjectType.MODULE: Namespace.MODULE_LIFECYCLE,
    SubjectType.FORK: Namespace.FORK_LIFECYCLE,
}


def lifecycle_address(
    subject_type: Union[SubjectType, str], subject_key: Optional[NaturalKey] = None
) -> Address:
    """Address of a subject's lifecycle summary.

    Each subject type has its own namespace, so a repo and a fork sharing a
    natural key keep separate summaries. The global summary is a singleton.
    """
    subject_type = SubjectType(subject_type)
    if subject_type is SubjectType.GLOBAL:
        return derive(Namespace.LIFECYCLE)
    return derive(_LIFECYCLE_NAMESPACES[subject_type], subject_key)


async def fetch_lifecycle(
    store: RecordStore,
    subject_type: Union[SubjectType, str],
    subject_key: Optional[NaturalKey] = None,
) -> Optional[LifecycleSummary]:
    return await fetch(store, lifecycle_address(subject_type, subject_key))


async def fetch_config(store: RecordStore) -> Optional[Config]:
    return await fetch(store, derive(Namespace.CONFIG))


def merge_update(entity: E, changes: Dict[str, Any]) -> Tuple[E, Record]:
    """Apply a partial update to ``entity``.

    Returns the validated updated entity and the partial record holding only
    the changed fields, ready for ``RecordStore.update``.
    """
    changes = {name: value for name, value in changes.items() if not is_no_change(value)}
    merged = type(entity).model_validate({**entity.model_dump(), **changes})
    dumped = to_record(merged)
    return merged, {name: dumped[name] for name in changes}


# =============================================================================
# Listing
# =============================================================================


def _has_all_tags(item_tags: Iterable[str], wanted: Iterable[str]) -> bool:
    available = set(item_tags)
    return all(tag in available for tag in normalize_tags(list(wanted)))


def _matches_search(needle: Optional[str], *haystacks: Optional[str]) -> bool:
    if not needle:
        return True
    needle = needle.lower()
    return any(needle in (text or "").lower() for text in haystacks)


def _page(items: List[E], key: Callable[[E], str], limit: int) -> Page[E]:
    ordered = sorted(items, key=lambda item: (item.created_at, key(item)))
    return Page(items=ordered[:limit], next_cursor=None)


async def list_repos(store: RecordStore, filter: Optional[RepoFilter] = None) -> Page[Repo]:
    """List repositories matching ``filter``. Only the first page is served."""
    filter = filter or RepoFilter()
    repos = [project_repo(record) for record in await store.list_by_namespace(Namespace.REPO)]

    def matches(repo: Repo) -> bool:
        if filter.active_only and not repo.is_active:
            return False
        if filter.visibility and repo.visibility != filter.visibility:
            return False
        if filter.source_type and repo.source_type != filter.source_type:
            return False
        if not _matches_search(filter.search, repo.name, repo.url):
            return False
        return _has_all_tags(repo.tags, filter.tags)

    return _page([repo for repo in repos if matches(repo)], lambda r: r.repo_key, filter.limit)


async def list_modules(
    store: RecordStore, filter: Optional[ModuleFilter] = None
) -> Page[Module]:
    """List modules matching ``filter``."""
    filter = filter or ModuleFilter()
    modules = [
        project_module(record) for record in await store.list_by_namespace(Namespace.MODULE)
    ]

    def matches(module: Module) -> bool:
        if filter.repo_key and module.repo_key != filter.repo_key:
            return False
        if filter.kind and module.kind != filter.kind:
            return False
        if filter.active_only and not module.is_active:
            return False
        if not _matches_search(filter.search, module.name, module.description):
            return False
        return _has_all_tags(module.tags, filter.tags)

    return _page(
        [module for module in modules if matches(module)], lambda m: m.module_key, filter.limit
    )


async def list_forks(store: RecordStore, filter: Optional[ForkFilter] = None) -> Page[Fork]:
    """List forks matching ``filter``."""
    filter = filter or ForkFilter()
    forks = [project_fork(record) for record in await store.list_by_namespace(Namespace.FORK)]

    def matches(fork: Fork) -> bool:
        if filter.fork_type and fork.fork_type != filter.fork_type:
            return False
        if not is_no_change(filter.parent) and fork.parent != filter.parent:
            return False
        if filter.active_only and not fork.is_active:
            return False
        if not _matches_search(filter.search, fork.label):
            return False
        return _has_all_tags(fork.tags, filter.tags)

    return _page([fork for fork in forks if matches(fork)], lambda f: f.fork_key, filter.limit)


async def list_module_versions(store: RecordStore, module_key: str) -> List[ModuleVersion]:
    """Version history of a module, oldest version first."""
    versions = [
        project_module_version(record)
        for record in await store.list_by_namespace(Namespace.MODULE_VERSION)
        if record.get("module_key") == module_key
    ]
    return sorted(versions, key=lambda v: v.version)


async def list_module_links(
    store: RecordStore,
    module_key: Optional[str] = None,
    repo_key: Optional[str] = None,
) -> List[ModuleLink]:
    """Module-repo links, filtered by either side."""
    links = [
        project_module_link(record)
        for record in await store.list_by_namespace(Namespace.MODULE_LINK)
    ]
    return sorted(
        (
            link
            for link in links
            if (module_key is None or link.module_key == module_key)
            and (repo_key is None or link.repo_key == repo_key)
        ),
        key=lambda link: (link.created_at, link.module_key, link.repo_key),
    )
