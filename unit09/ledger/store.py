"""
Record storage abstraction for the ledger.

The ledger is a remote key-value store reached through request/response
calls. Implementations keep the same contract:

- get: the raw record or None
- create_if_absent: atomic; False if a record already lives at the address
- update: shallow merge of a partial record; False if nothing is stored
- list_by_namespace: every record in one address space

Records are plain JSON-compatible dicts.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from .addressing import Address, Namespace

Record = Dict[str, Any]


class RecordStore(ABC):
    """Abstract base class for ledger record storage."""

    @abstractmethod
    async def get(self, address: Address) -> Optional[Record]:
        """Return the record stored at ``address`` or None."""
        pass

    @abstractmethod
    async def create_if_absent(self, address: Address, record: Record) -> bool:
        """Store ``record`` unless the address is taken. Returns True if stored."""
        pass

    @abstractmethod
    async def update(self, address: Address, partial: Record) -> bool:
        """Merge ``partial`` into the stored record. Returns False if absent."""
        pass

    @abstractmethod
    async def list_by_namespace(self, namespace: Namespace) -> List[Record]:
        """Return all records in ``namespace`` in creation order."""
        pass


class InMemoryRecordStore(RecordStore):
    """Process-local store used by tests and single-process runs.

    Each operation completes without yielding to the event loop, which makes
    create_if_absent atomic for asyncio callers.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Tuple[Namespace, Record]] = {}

    async def get(self, address: Address) -> Optional[Record]:
        entry = self._records.get(address.value)
        if entry is None:
            return None
        return copy.deepcopy(entry[1])

    async def create_if_absent(self, address: Address, record: Record) -> bool:
        if address.value in self._records:
            return False
        self._records[address.value] = (address.namespace, copy.deepcopy(record))
        return True

    async def update(self, address: Address, partial: Record) -> bool:
        entry = self._records.get(address.value)
        if entry is None:
            return False
        entry[1].update(copy.deepcopy(partial))
        return True

    async def list_by_namespace(self, namespace: Namespace) -> List[Record]:
        return [
            copy.deepcopy(record)
            for record_namespace, record in self._records.values()
            if record_namespace == namespace
        ]

    def __len__(self) -> int:
        return len(self._records)
