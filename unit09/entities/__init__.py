"""
Entity model for unit09.

- Config: the deployment-wide settings singleton
- Repo: a registered source repository
- Module: a unit of code owned by a repository, versioned semantically
- ModuleVersion / ModuleLink: version history and cross-repo links of a module
- Fork: a lineage node forming a tree through parent references
- LifecycleSummary: per-subject activity record moved by LifecycleEvents
- GlobalMetrics / RepoMetrics: monotonically growing counters
"""

from .config import DEFAULT_MAX_MODULES_PER_REPO, MAX_FEE_BPS, Config, ConfigUpdate
from .enums import (
    ForkType,
    LifecycleEventKind,
    LifecycleStatus,
    ModuleKind,
    SourceType,
    SubjectType,
    VersionPart,
    Visibility,
)
from .fork import Fork, ForkCreate, ForkFilter, ForkLineage, ForkUpdate, build_lineage
from .lifecycle import LifecycleEvent, LifecycleSummary, apply_lifecycle_event
from .metrics import GlobalMetrics, RepoMetrics
from .module import (
    INITIAL_VERSION,
    Module,
    ModuleCreate,
    ModuleFilter,
    ModuleLink,
    ModuleUpdate,
    ModuleVersion,
    SemanticVersion,
    compare_semantic_version,
)
from .pages import Page
from .primitives import (
    NO_CHANGE,
    NoChange,
    generate_key,
    generate_ulid,
    is_no_change,
    normalize_tags,
    utc_now,
)
from .repo import Repo, RepoCreate, RepoFilter, RepoStats, RepoUpdate

__all__ = [
    # Enums
    "ForkType",
    "LifecycleEventKind",
    "LifecycleStatus",
    "ModuleKind",
    "SourceType",
    "SubjectType",
    "VersionPart",
    "Visibility",
    # Primitives
    "NO_CHANGE",
    "NoChange",
    "generate_key",
    "generate_ulid",
    "is_no_change",
    "normalize_tags",
    "utc_now",
    "Page",
    # Config
    "Config",
    "ConfigUpdate",
    "DEFAULT_MAX_MODULES_PER_REPO",
    "MAX_FEE_BPS",
    # Repo
    "Repo",
    "RepoCreate",
    "RepoFilter",
    "RepoStats",
    "RepoUpdate",
    # Module
    "INITIAL_VERSION",
    "Module",
    "ModuleCreate",
    "ModuleFilter",
    "ModuleLink",
    "ModuleUpdate",
    "ModuleVersion",
    "SemanticVersion",
    "compare_semantic_version",
    # Fork
    "Fork",
    "ForkCreate",
    "ForkFilter",
    "ForkLineage",
    "ForkUpdate",
    "build_lineage",
    # Lifecycle
    "LifecycleEvent",
    "LifecycleSummary",
    "apply_lifecycle_event",
    # Metrics
    "GlobalMetrics",
    "RepoMetrics",
]
