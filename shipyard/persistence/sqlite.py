"""SQLite implementation of the state store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional

from ..contracts import StoredRecord
from ..errors import ConcurrentUpdateError, StoreUnavailable
from .store import RecordKind, StateStore


class SQLiteStateStore(StateStore):
    """Persist records using SQLite. Expired rows are purged lazily."""

    def __init__(
        self,
        db_path: str | Path,
        ttls: Optional[Mapping[RecordKind, int]] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(ttls)
        self.db_path = str(db_path)
        self._clock = clock
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._write_lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS records (
                kind TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                version INTEGER NOT NULL,
                expires_at REAL,
                PRIMARY KEY (kind, id)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _live_row(self, kind: RecordKind, record_id: str) -> sqlite3.Row | None:
        row = self._fetchone(
            "SELECT data, version, expires_at FROM records WHERE kind = ? AND id = ?",
            kind.value,
            record_id,
        )
        if row is None:
            return None
        if row["expires_at"] is not None and self._clock() >= row["expires_at"]:
            return None
        return row

    def _get_sync(self, kind: RecordKind, record_id: str) -> Optional[str]:
        with self._write_lock:
            row = self._live_row(kind, record_id)
        return row["data"] if row else None

    def _put_sync(
        self,
        kind: RecordKind,
        record: StoredRecord,
        ttl: int,
        expected_version: Optional[int],
    ) -> int:
        with self._write_lock:
            row = self._live_row(kind, record.id)
            actual = row["version"] if row else None
            if expected_version is not None and (actual or 0) != expected_version:
                raise ConcurrentUpdateError(kind.value, record.id, expected_version, actual)
            new_version = (actual or 0) + 1
            data = record.model_copy(update={"version": new_version}).model_dump_json()
            expires_at = self._clock() + ttl if ttl else None
            self._conn.execute(
                "INSERT OR REPLACE INTO records (kind, id, data, version, expires_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (kind.value, record.id, data, new_version, expires_at),
            )
            self._conn.commit()
        return new_version

    def _delete_sync(self, kind: RecordKind, record_id: str) -> None:
        with self._write_lock:
            self._conn.execute(
                "DELETE FROM records WHERE kind = ? AND id = ?", (kind.value, record_id)
            )
            self._conn.commit()

    def _list_sync(self, kind: RecordKind) -> List[str]:
        with self._write_lock:
            now = self._clock()
            self._conn.execute(
                "DELETE FROM records WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (now,),
            )
            self._conn.commit()
            rows = self._fetchall(
                "SELECT data FROM records WHERE kind = ? ORDER BY id", kind.value
            )
        return [r["data"] for r in rows]

    # ------------------------------------------------------------------
    # Store API
    async def get(self, kind: RecordKind, record_id: str) -> Optional[StoredRecord]:
        try:
            data = await asyncio.to_thread(self._get_sync, kind, record_id)
        except sqlite3.Error as e:
            raise StoreUnavailable(str(e)) from e
        return self.decode(kind, data) if data is not None else None

    async def put(
        self,
        kind: RecordKind,
        record: StoredRecord,
        ttl: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> StoredRecord:
        ttl = self.ttl_for(kind) if ttl is None else ttl
        try:
            record.version = await asyncio.to_thread(
                self._put_sync, kind, record, ttl, expected_version
            )
        except sqlite3.Error as e:
            raise StoreUnavailable(str(e)) from e
        return record

    async def delete(self, kind: RecordKind, record_id: str) -> None:
        try:
            await asyncio.to_thread(self._delete_sync, kind, record_id)
        except sqlite3.Error as e:
            raise StoreUnavailable(str(e)) from e

    async def list(self, kind: RecordKind) -> List[StoredRecord]:
        try:
            rows = await asyncio.to_thread(self._list_sync, kind)
        except sqlite3.Error as e:
            raise StoreUnavailable(str(e)) from e
        return [self.decode(kind, data) for data in rows]

    async def close(self) -> None:
        self._conn.close()
