"""Tests for projecting raw ledger records into entities."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from unit09.entities import (
    NO_CHANGE,
    ForkFilter,
    ForkType,
    ModuleFilter,
    ModuleKind,
    RepoFilter,
    Module,
    SemanticVersion,
    SubjectType,
    Visibility,
)
from unit09.ledger import projection
from unit09.ledger.addressing import Namespace, derive, generate_key

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


async def put(store, namespace, key, record):
    assert await store.create_if_absent(derive(namespace, key), record)


def repo_record(key, name, minutes=0, **extra):
    record = {
        "repo_key": key,
        "name": name,
        "created_at": (T0 + timedelta(minutes=minutes)).isoformat(),
    }
    record.update(extra)
    return record


class TestFetch:
    """fetch_* never raises for a missing record."""

    @pytest.mark.asyncio
    async def test_missing_records_are_none(self, record_store):
        key = generate_key()
        assert await projection.fetch_repo(record_store, key) is None
        assert await projection.fetch_module(record_store, key) is None
        assert await projection.fetch_fork(record_store, key) is None
        assert await projection.fetch_repo_metrics(record_store, key) is None
        assert await projection.fetch_global_metrics(record_store) is None
        assert await projection.fetch_lifecycle(record_store, SubjectType.GLOBAL) is None
        assert await projection.fetch_lifecycle(record_store, SubjectType.FORK, key) is None
        assert await projection.fetch_config(record_store) is None

    @pytest.mark.asyncio
    async def test_fork_defaults(self, record_store):
        key = generate_key()
        await put(record_store, Namespace.FORK, key, {"fork_key": key, "label": "bare"})

        fork = await projection.fetch_fork(record_store, key)

        assert fork.fork_type is ForkType.INSTANCE
        assert fork.depth == 0
        assert fork.is_root is True
        assert fork.parent is None
        assert fork.is_active is True

    @pytest.mark.asyncio
    async def test_non_root_fork_derives_root_flag(self, record_store):
        key = generate_key()
        await put(
            record_store,
            Namespace.FORK,
            key,
            {"fork_key": key, "label": "child", "parent": "p", "depth": 1},
        )
        fork = await projection.fetch_fork(record_store, key)
        assert fork.is_root is False

    @pytest.mark.asyncio
    async def test_module_defaults(self, record_store):
        key = generate_key()
        await put(
            record_store,
            Namespace.MODULE,
            key,
            {"module_key": key, "repo_key": "r", "name": "m", "kind": "mystery"},
        )

        module = await projection.fetch_module(record_store, key)

        assert module.kind is ModuleKind.OTHER
        assert module.current_version == SemanticVersion(0, 1, 0)

    @pytest.mark.asyncio
    async def test_module_version_string(self, record_store):
        key = generate_key()
        await put(
            record_store,
            Namespace.MODULE,
            key,
            {"module_key": key, "repo_key": "r", "name": "m", "current_version": "v1.2.3"},
        )
        module = await projection.fetch_module(record_store, key)
        assert module.current_version == SemanticVersion(1, 2, 3)

    @pytest.mark.asyncio
    async def test_repo_defaults_and_tag_string(self, record_store):
        key = generate_key()
        await put(
            record_store,
            Namespace.REPO,
            key,
            repo_record(key, "raw", tags="Solana, CLI,solana", visibility=None),
        )

        repo = await projection.fetch_repo(record_store, key)

        assert repo.tags == ["solana", "cli"]
        assert repo.visibility is Visibility.PUBLIC
        assert repo.allow_observation is True
        assert repo.updated_at == repo.created_at == T0

    @pytest.mark.asyncio
    async def test_fetch_by_address(self, record_store):
        key = generate_key()
        await put(record_store, Namespace.REPO, key, repo_record(key, "generic"))
        repo = await projection.fetch(record_store, derive(Namespace.REPO, key))
        assert repo.name == "generic"


class TestListing:
    """list_* filter in memory and serve only the first page."""

    @pytest.fixture
    def keys(self):
        return [generate_key() for _ in range(4)]

    @pytest_asyncio.fixture
    async def seeded(self, record_store, keys):
        records = [
            repo_record(keys[0], "Alpha", 3, tags=["solana", "cli"], url="https://x/alpha"),
            repo_record(keys[1], "beta", 1, tags=["solana"], visibility="private"),
            repo_record(keys[2], "Gamma", 2, tags=["cli"], is_active=False),
            repo_record(keys[3], "delta", 0, url="https://x/ALPHA-mirror"),
        ]
        for record in records:
            await put(record_store, Namespace.REPO, record["repo_key"], record)
        return record_store

    @pytest.mark.asyncio
    async def test_ordered_by_created_at(self, seeded, keys):
        page = await projection.list_repos(seeded)
        assert [r.repo_key for r in page.items] == [keys[3], keys[1], keys[2], keys[0]]
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_tags_require_all(self, seeded, keys):
        page = await projection.list_repos(seeded, RepoFilter(tags=["SOLANA", "cli"]))
        assert [r.repo_key for r in page.items] == [keys[0]]

    @pytest.mark.asyncio
    async def test_search_matches_name_and_url_case_insensitively(self, seeded, keys):
        page = await projection.list_repos(seeded, RepoFilter(search="alpha"))
        assert {r.repo_key for r in page.items} == {keys[0], keys[3]}

    @pytest.mark.asyncio
    async def test_active_and_visibility_filters(self, seeded, keys):
        active = await projection.list_repos(seeded, RepoFilter(active_only=True))
        assert keys[2] not in {r.repo_key for r in active.items}

        private = await projection.list_repos(seeded, RepoFilter(visibility="private"))
        assert [r.repo_key for r in private.items] == [keys[1]]

    @pytest.mark.asyncio
    async def test_limit_cuts_first_page(self, seeded, keys):
        page = await projection.list_repos(seeded, RepoFilter(limit=2))
        assert [r.repo_key for r in page.items] == [keys[3], keys[1]]
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_modules_filtered_by_repo_and_kind(self, record_store):
        first, second = generate_key(), generate_key()
        for key, repo_key, kind in ((first, "r1", "cli-tool"), (second, "r2", "cli-tool")):
            await put(
                record_store,
                Namespace.MODULE,
                key,
                {"module_key": key, "repo_key": repo_key, "name": key[:6], "kind": kind},
            )

        page = await projection.list_modules(
            record_store, ModuleFilter(repo_key="r1", kind=ModuleKind.CLI_TOOL)
        )
        assert [m.module_key for m in page.items] == [first]

    @pytest.mark.asyncio
    async def test_forks_parent_filter(self, record_store):
        root, child = generate_key(), generate_key()
        await put(record_store, Namespace.FORK, root, {"fork_key": root, "label": "root"})
        await put(
            record_store,
            Namespace.FORK,
            child,
            {"fork_key": child, "label": "child", "parent": root, "depth": 1},
        )

        everything = await projection.list_forks(record_store, ForkFilter(parent=NO_CHANGE))
        roots = await projection.list_forks(record_store, ForkFilter(parent=None))
        children = await projection.list_forks(record_store, ForkFilter(parent=root))

        assert len(everything.items) == 2
        assert [f.fork_key for f in roots.items] == [root]
        assert [f.fork_key for f in children.items] == [child]


class TestMergeUpdate:
    @pytest.mark.asyncio
    async def test_only_changed_fields_in_partial(self, record_store):
        key = generate_key()
        await put(record_store, Namespace.REPO, key, repo_record(key, "before", tags=["a"]))
        repo = await projection.fetch_repo(record_store, key)

        updated, partial = projection.merge_update(repo, {"name": "after", "url": NO_CHANGE})

        assert partial == {"name": "after"}
        assert updated.name == "after"
        assert updated.tags == ["a"]
        assert repo.name == "before"

    def test_versions_are_stored_as_text(self):
        module = Module(
            module_key="m", repo_key="r", name="core", recommended_version=(1, 4, 0)
        )

        record = projection.to_record(module)

        assert record["current_version"] == "v0.1.0"
        assert record["recommended_version"] == "v1.4.0"
        assert projection.project_module(record).recommended_version == SemanticVersion(1, 4, 0)


class TestLifecycleAddress:
    def test_subject_types_never_share_an_address(self):
        key = generate_key()
        addresses = {
            projection.lifecycle_address(subject_type, key)
            for subject_type in (SubjectType.REPO, SubjectType.MODULE, SubjectType.FORK)
        }
        assert len(addresses) == 3

    def test_global_is_the_bare_namespace(self):
        assert projection.lifecycle_address(SubjectType.GLOBAL) == derive(Namespace.LIFECYCLE)
        assert projection.lifecycle_address("repo", "ab" * 32).namespace is Namespace.REPO_LIFECYCLE
