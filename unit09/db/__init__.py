"""Database layer for unit09."""

from .base import (
    Base,
    create_db_engine,
    drop_database,
    get_engine,
    get_session_local,
    init_database,
)
from .models import JobModel, LedgerRecordModel

__all__ = [
    "Base",
    "JobModel",
    "LedgerRecordModel",
    "create_db_engine",
    "drop_database",
    "get_engine",
    "get_session_local",
    "init_database",
]
