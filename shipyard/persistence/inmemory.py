"""In-memory implementation of the state store."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from ..contracts import StoredRecord
from ..errors import ConcurrentUpdateError
from .store import RecordKind, StateStore


class InMemoryStateStore(StateStore):
    """Store records in local memory.

    Useful for tests or when no backend is configured. Data is not
    persisted across process restarts. Records are serialised on write so
    callers never share mutable state with the store.
    """

    def __init__(
        self,
        ttls: Optional[Mapping[RecordKind, int]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(ttls)
        self._clock = clock
        # (kind, id) -> (json, version, expires_at)
        self._records: Dict[Tuple[RecordKind, str], Tuple[str, int, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _live(self, kind: RecordKind, record_id: str) -> Optional[Tuple[str, int, Optional[float]]]:
        entry = self._records.get((kind, record_id))
        if entry is None:
            return None
        expires_at = entry[2]
        if expires_at is not None and self._clock() >= expires_at:
            del self._records[(kind, record_id)]
            return None
        return entry

    # ------------------------------------------------------------------
    async def get(self, kind: RecordKind, record_id: str) -> Optional[StoredRecord]:
        async with self._lock:
            entry = self._live(kind, record_id)
        if entry is None:
            return None
        return self.decode(kind, entry[0])

    async def put(
        self,
        kind: RecordKind,
        record: StoredRecord,
        ttl: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> StoredRecord:
        ttl = self.ttl_for(kind) if ttl is None else ttl
        async with self._lock:
            entry = self._live(kind, record.id)
            actual = entry[1] if entry else None
            if expected_version is not None and (actual or 0) != expected_version:
                raise ConcurrentUpdateError(kind.value, record.id, expected_version, actual)
            record.version = (actual or 0) + 1
            expires_at = self._clock() + ttl if ttl else None
            self._records[(kind, record.id)] = (
                record.model_dump_json(),
                record.version,
                expires_at,
            )
        return record

    async def delete(self, kind: RecordKind, record_id: str) -> None:
        async with self._lock:
            self._records.pop((kind, record_id), None)

    async def list(self, kind: RecordKind) -> List[StoredRecord]:
        async with self._lock:
            ids = [rid for (k, rid) in list(self._records) if k == kind]
            entries = [self._live(kind, rid) for rid in ids]
        return [self.decode(kind, e[0]) for e in entries if e is not None]
