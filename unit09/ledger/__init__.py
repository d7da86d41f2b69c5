"""
Ledger access for unit09.

Records live in a key-value store at deterministic addresses. This package
provides the addressing function, the storage contract with in-memory and
SQL implementations, the projection of raw records into entities, and the
services that register and update entities.
"""

from .addressing import Address, Namespace, compound_key, derive, generate_key, is_valid_key
from .projection import (
    fetch,
    fetch_config,
    fetch_fork,
    fetch_global_metrics,
    fetch_lifecycle,
    fetch_module,
    fetch_repo,
    fetch_repo_metrics,
    lifecycle_address,
    list_forks,
    list_module_links,
    list_module_versions,
    list_modules,
    list_repos,
    merge_update,
)
from .services import (
    ConfigService,
    ForkService,
    Ledger,
    LifecycleService,
    MetricsService,
    ModuleService,
    RepoService,
)
from .store import InMemoryRecordStore, Record, RecordStore

__all__ = [
    "Address",
    "Namespace",
    "compound_key",
    "derive",
    "generate_key",
    "is_valid_key",
    "Record",
    "RecordStore",
    "InMemoryRecordStore",
    "fetch",
    "fetch_config",
    "fetch_fork",
    "fetch_global_metrics",
    "fetch_lifecycle",
    "fetch_module",
    "fetch_repo",
    "fetch_repo_metrics",
    "lifecycle_address",
    "list_forks",
    "list_module_links",
    "list_module_versions",
    "list_modules",
    "list_repos",
    "merge_update",
    "ConfigService",
    "ForkService",
    "Ledger",
    "LifecycleService",
    "MetricsService",
    "ModuleService",
    "RepoService",
]
