"""Unit tests for the entity model."""

import copy
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from unit09.entities import (
    INITIAL_VERSION,
    NO_CHANGE,
    Fork,
    ForkUpdate,
    GlobalMetrics,
    LifecycleEvent,
    LifecycleEventKind,
    LifecycleStatus,
    LifecycleSummary,
    ModuleCreate,
    ModuleKind,
    RepoCreate,
    RepoUpdate,
    SemanticVersion,
    SubjectType,
    apply_lifecycle_event,
    build_lineage,
    compare_semantic_version,
    is_no_change,
    normalize_tags,
)
from unit09.entities.primitives import collect_changes

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_fork(key, parent=None, depth=0):
    return Fork(
        fork_key=key,
        parent=parent,
        label=f"fork {key}",
        depth=depth,
        is_root=parent is None,
    )


def make_event(kind, minutes=0, subject_type=SubjectType.REPO, key="r1"):
    return LifecycleEvent(
        kind=kind,
        subject_type=subject_type,
        subject_key=key,
        timestamp=T0 + timedelta(minutes=minutes),
    )


class TestNormalizeTags:
    def test_trims_lowercases_and_dedupes(self):
        assert normalize_tags([" Solana ", "solana", "", "CLI", "cli "]) == ["solana", "cli"]

    def test_accepts_comma_separated_string(self):
        assert normalize_tags("a, B ,,c") == ["a", "b", "c"]

    def test_none_is_empty(self):
        assert normalize_tags(None) == []

    def test_schema_normalizes_on_create(self):
        repo = RepoCreate(name="r", tags=["X", "x", " y "])
        assert repo.tags == ["x", "y"]


class TestSemanticVersion:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("1.2.3", SemanticVersion(1, 2, 3)),
            ("v0.10.0", SemanticVersion(0, 10, 0)),
            ("  v2.0.1  ", SemanticVersion(2, 0, 1)),
        ],
    )
    def test_parse(self, text, expected):
        assert SemanticVersion.parse(text) == expected

    @pytest.mark.parametrize("text", ["1.2", "1.2.3.4", "a.b.c", "-1.2.3", "1..3", ""])
    def test_parse_malformed_returns_none(self, text):
        assert SemanticVersion.parse(text) is None

    def test_ordering_is_lexicographic(self):
        assert SemanticVersion(1, 2, 3) < SemanticVersion(1, 3, 0) < SemanticVersion(2, 0, 0)
        assert compare_semantic_version(SemanticVersion(1, 3, 0), SemanticVersion(1, 2, 9)) == 1
        assert compare_semantic_version(SemanticVersion(1, 0, 0), SemanticVersion(1, 0, 0)) == 0
        assert compare_semantic_version(SemanticVersion(0, 9, 9), SemanticVersion(1, 0, 0)) == -1

    @pytest.mark.parametrize(
        "part,expected",
        [
            ("major", SemanticVersion(2, 0, 0)),
            ("minor", SemanticVersion(1, 3, 0)),
            ("patch", SemanticVersion(1, 2, 4)),
        ],
    )
    def test_bump(self, part, expected):
        assert SemanticVersion(1, 2, 3).bump(part) == expected

    def test_format(self):
        assert SemanticVersion(1, 2, 3).format() == "v1.2.3"

    def test_module_create_defaults_and_coerces(self):
        assert ModuleCreate(repo_key="r", name="m").version == INITIAL_VERSION
        assert ModuleCreate(repo_key="r", name="m", version="v1.4.2").version == (1, 4, 2)

    def test_module_create_rejects_malformed_version(self):
        with pytest.raises(ValidationError):
            ModuleCreate(repo_key="r", name="m", version="1.x")

    def test_module_create_rejects_negative_version(self):
        with pytest.raises(ValidationError):
            ModuleCreate(repo_key="r", name="m", version=(1, -1, 0))

    def test_module_kind_defaults_to_other(self):
        assert ModuleCreate(repo_key="r", name="m").kind is ModuleKind.OTHER


class TestNoChange:
    def test_sentinel_properties(self):
        assert not NO_CHANGE
        assert repr(NO_CHANGE) == "NO_CHANGE"
        assert copy.deepcopy(NO_CHANGE) is NO_CHANGE
        assert is_no_change(NO_CHANGE)
        assert not is_no_change(None)

    def test_update_defaults_to_no_change(self):
        update = RepoUpdate()
        assert collect_changes(update) == {}

    def test_none_is_a_change(self):
        update = ForkUpdate(metadata_uri=None, tags=["A"])
        assert collect_changes(update) == {"metadata_uri": None, "tags": ["a"]}


class TestForkInvariants:
    def test_root_fork(self):
        fork = make_fork("root")
        assert fork.is_root and fork.depth == 0 and fork.parent is None

    def test_child_fork(self):
        fork = make_fork("child", parent="root", depth=1)
        assert not fork.is_root

    @pytest.mark.parametrize(
        "parent,depth,is_root",
        [
            (None, 1, True),
            ("root", 0, False),
            ("root", 1, True),
            (None, 0, False),
        ],
    )
    def test_inconsistent_root_rejected(self, parent, depth, is_root):
        with pytest.raises(ValidationError):
            Fork(fork_key="f", parent=parent, label="f", depth=depth, is_root=is_root)


class TestBuildLineage:
    def test_chain_root_a_b(self):
        root = make_fork("root")
        a = make_fork("a", parent="root", depth=1)
        b = make_fork("b", parent="a", depth=2)

        lineage = build_lineage(b, [root, a])

        assert lineage.path == ["root", "a", "b"]
        assert lineage.root_key == "root"

    def test_ancestors_sorted_by_depth(self):
        root = make_fork("root")
        a = make_fork("a", parent="root", depth=1)
        b = make_fork("b", parent="a", depth=2)

        assert build_lineage(b, [a, root]).path == ["root", "a", "b"]

    def test_fork_without_ancestors_is_its_own_root(self):
        root = make_fork("root")
        lineage = build_lineage(root, [])
        assert lineage.root_key == "root"
        assert lineage.path == ["root"]


class TestLifecycle:
    def start(self):
        return LifecycleSummary.start(make_event(LifecycleEventKind.REPO_CREATED))

    def test_start(self):
        summary = self.start()
        assert summary.status is LifecycleStatus.CREATED
        assert summary.created_at == T0
        assert summary.last_activity_at == T0

    def test_last_activity_is_running_max(self):
        summary = apply_lifecycle_event(
            self.start(), make_event(LifecycleEventKind.REPO_UPDATED, minutes=10)
        )
        summary = apply_lifecycle_event(
            summary, make_event(LifecycleEventKind.REPO_UPDATED, minutes=5)
        )
        assert summary.last_activity_at == T0 + timedelta(minutes=10)

    def test_observation_moves_status(self):
        summary = apply_lifecycle_event(
            self.start(), make_event(LifecycleEventKind.OBSERVATION_STARTED, minutes=1)
        )
        assert summary.status is LifecycleStatus.OBSERVING
        assert summary.last_observation_at == T0 + timedelta(minutes=1)

        summary = apply_lifecycle_event(
            summary, make_event(LifecycleEventKind.OBSERVATION_COMPLETED, minutes=2)
        )
        assert summary.status is LifecycleStatus.STABLE
        assert summary.last_observation_at == T0 + timedelta(minutes=2)

    def test_error_sticks_through_observation_completed(self):
        summary = apply_lifecycle_event(
            self.start(), make_event(LifecycleEventKind.ERROR, minutes=3)
        )
        assert summary.status is LifecycleStatus.ERROR
        assert summary.last_error_at == T0 + timedelta(minutes=3)

        summary = apply_lifecycle_event(
            summary, make_event(LifecycleEventKind.OBSERVATION_COMPLETED, minutes=4)
        )
        assert summary.status is LifecycleStatus.ERROR

    def test_apply_is_pure(self):
        summary = self.start()
        apply_lifecycle_event(summary, make_event(LifecycleEventKind.ERROR, minutes=3))
        assert summary.status is LifecycleStatus.CREATED
        assert summary.last_error_at is None


class TestGlobalMetrics:
    def test_to_json_renders_counters_as_strings(self):
        metrics = GlobalMetrics(total_repos=2, total_lines_of_code=12345678901234)
        data = metrics.to_json()
        assert data["total_repos"] == "2"
        assert data["total_lines_of_code"] == "12345678901234"
        assert "last_observation_at" not in data

    def test_counters_cannot_be_negative(self):
        with pytest.raises(ValidationError):
            GlobalMetrics(total_repos=-1)
