"""
SQLAlchemy models for unit09.
"""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from ..entities.primitives import utc_now
from .base import Base


class LedgerRecordModel(Base):
    """A ledger record addressed by its derived address."""

    __tablename__ = "ledger_records"

    address = Column(String(64), primary_key=True)
    namespace = Column(String(32), nullable=False, index=True)
    data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("ix_ledger_records_namespace_created", "namespace", "created_at"),)


class JobModel(Base):
    """A pipeline job.

    ``seq`` preserves enqueue order; ``id`` is the public identifier.
    """

    __tablename__ = "jobs"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True, index=True)
    type = Column(String(32), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default="pending", index=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)

    __table_args__ = (Index("ix_jobs_status_seq", "status", "seq"),)
