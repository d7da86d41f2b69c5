"""
Canonical enums for the entity model.

Values are the ones persisted in ledger records; projections map unknown or
missing values onto the defaults declared next to each entity.
"""

from enum import Enum


class Visibility(str, Enum):
    """Repository visibility levels."""

    PUBLIC = "public"
    PRIVATE = "private"


class SourceType(str, Enum):
    """Where a repository's code is observed from."""

    GITHUB = "github"
    GIT_LOCAL = "git-local"
    ARCHIVE = "archive"
    CUSTOM = "custom"


class ModuleKind(str, Enum):
    """Closed set of module kinds."""

    ANCHOR_PROGRAM = "anchor-program"
    SOLANA_CLIENT = "solana-client"
    TYPESCRIPT_SDK = "typescript-sdk"
    CLI_TOOL = "cli-tool"
    FRONTEND_STUB = "frontend-stub"
    CONFIG_BUNDLE = "config-bundle"
    OTHER = "other"


class ForkType(str, Enum):
    """Kinds of fork nodes. INSTANCE is the generic kind."""

    INSTANCE = "instance"
    MODULE_VARIANT = "module-variant"
    EXPERIMENT = "experiment"
    ARCHIVE = "archive"


class LifecycleStatus(str, Enum):
    """Lifecycle status of a subject."""

    CREATED = "created"
    OBSERVING = "observing"
    STABLE = "stable"
    DEGRADED = "degraded"
    ERROR = "error"
    ARCHIVED = "archived"


class LifecycleEventKind(str, Enum):
    """Discrete events that move a lifecycle summary forward."""

    REPO_CREATED = "repo-created"
    REPO_UPDATED = "repo-updated"
    MODULE_REGISTERED = "module-registered"
    MODULE_UPDATED = "module-updated"
    FORK_CREATED = "fork-created"
    FORK_UPDATED = "fork-updated"
    OBSERVATION_STARTED = "observation-started"
    OBSERVATION_COMPLETED = "observation-completed"
    METRICS_UPDATED = "metrics-updated"
    ERROR = "error"


class SubjectType(str, Enum):
    """What a lifecycle summary is about."""

    REPO = "repo"
    MODULE = "module"
    FORK = "fork"
    GLOBAL = "global"


class VersionPart(str, Enum):
    """Component of a semantic version to bump."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
