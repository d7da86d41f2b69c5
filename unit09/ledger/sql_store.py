"""
Durable ledger record store backed by SQLAlchemy.

The address column is the primary key, so create_if_absent relies on the
database's uniqueness constraint rather than a read-then-write.

Sessions are synchronous. Each operation runs in a worker thread through
``asyncio.to_thread`` so ledger I/O suspends the caller instead of blocking
the event loop that drives the worker and its in-flight handlers.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.models import LedgerRecordModel
from ..errors import TransportError
from .addressing import Address, Namespace
from .store import Record, RecordStore

logger = structlog.get_logger()


class SqlRecordStore(RecordStore):
    """Record store over the ``ledger_records`` table."""

    def __init__(self, session_factory: Callable[[], Session]):
        """Initialize with a session factory.

        Args:
            session_factory: Callable returning a new Session per operation
        """
        self.session_factory = session_factory

    async def get(self, address: Address) -> Optional[Record]:
        return await asyncio.to_thread(self._get, address)

    async def create_if_absent(self, address: Address, record: Record) -> bool:
        return await asyncio.to_thread(self._create_if_absent, address, record)

    async def update(self, address: Address, partial: Record) -> bool:
        return await asyncio.to_thread(self._update, address, partial)

    async def list_by_namespace(self, namespace: Namespace) -> List[Record]:
        return await asyncio.to_thread(self._list_by_namespace, Namespace(namespace))

    def _get(self, address: Address) -> Optional[Record]:
        db = self.session_factory()
        try:
            row = db.get(LedgerRecordModel, address.value)
            return dict(row.data) if row is not None else None
        except SQLAlchemyError as e:
            raise TransportError(f"Ledger read failed at {address}: {e}") from e
        finally:
            db.close()

    def _create_if_absent(self, address: Address, record: Record) -> bool:
        db = self.session_factory()
        try:
            db.add(
                LedgerRecordModel(
                    address=address.value,
                    namespace=address.namespace.value,
                    data=dict(record),
                )
            )
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            logger.debug("ledger_create_conflict", address=address.value)
            return False
        except SQLAlchemyError as e:
            db.rollback()
            raise TransportError(f"Ledger write failed at {address}: {e}") from e
        finally:
            db.close()

    def _update(self, address: Address, partial: Record) -> bool:
        db = self.session_factory()
        try:
            row = db.get(LedgerRecordModel, address.value, with_for_update=True)
            if row is None:
                return False
            # Reassign so the JSON column is flagged as modified
            row.data = {**row.data, **partial}
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            raise TransportError(f"Ledger update failed at {address}: {e}") from e
        finally:
            db.close()

    def _list_by_namespace(self, namespace: Namespace) -> List[Record]:
        db = self.session_factory()
        try:
            rows = db.scalars(
                select(LedgerRecordModel)
                .where(LedgerRecordModel.namespace == namespace.value)
                .order_by(LedgerRecordModel.created_at.asc())
            ).all()
            return [dict(row.data) for row in rows]
        except SQLAlchemyError as e:
            raise TransportError(f"Ledger scan failed for {namespace}: {e}") from e
        finally:
            db.close()
