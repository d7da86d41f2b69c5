"""Test configuration and fixtures."""

from typing import Generator

import pytest
from sqlalchemy import Engine

from unit09.db.base import create_db_engine, drop_database, get_session_local, init_database
from unit09.ledger.services import Ledger
from unit09.ledger.sql_store import SqlRecordStore
from unit09.ledger.store import InMemoryRecordStore
from unit09.worker.handlers import JobContext
from unit09.worker.queue import InMemoryJobQueue
from unit09.worker.sql_queue import SqlJobQueue
from unit09.worker.stages import StubStages


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def ledger(record_store) -> Ledger:
    """Ledger services over an in-memory store."""
    return Ledger(record_store)


@pytest.fixture
def sql_engine() -> Generator[Engine, None, None]:
    """SQLite in-memory engine with all tables created."""
    engine = create_db_engine("sqlite://")
    init_database(engine)
    yield engine
    drop_database(engine)
    engine.dispose()


@pytest.fixture
def session_factory(sql_engine):
    return get_session_local(sql_engine)


@pytest.fixture
def sql_record_store(session_factory) -> SqlRecordStore:
    return SqlRecordStore(session_factory)


@pytest.fixture
def sql_ledger(sql_record_store) -> Ledger:
    return Ledger(sql_record_store)


@pytest.fixture(params=["memory", "sql"])
def job_queue(request):
    """Each queue test runs against both backends."""
    if request.param == "memory":
        return InMemoryJobQueue()
    return SqlJobQueue(request.getfixturevalue("session_factory"))


@pytest.fixture
def memory_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def job_context() -> JobContext:
    return JobContext(stages=StubStages())
