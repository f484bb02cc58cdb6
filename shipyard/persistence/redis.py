"""Redis state store for cross-process deployments."""

from __future__ import annotations

import json
from typing import Any, List, Mapping, Optional

try:
    import redis.asyncio as redis
    from redis.exceptions import RedisError, WatchError
except ImportError:
    redis = None

from ..contracts import StoredRecord
from ..errors import ConcurrentUpdateError, StoreUnavailable
from .store import RecordKind, StateStore

KEY_PREFIX = "shipyard"


class RedisStateStore(StateStore):
    """Redis-backed store. TTLs map onto native key expiry."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        url: Optional[str] = None,
        ttls: Optional[Mapping[RecordKind, int]] = None,
        client: Optional[Any] = None,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisStateStore")
        super().__init__(ttls)

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.url = url
        self._redis: Optional[Any] = client

    @staticmethod
    def key(kind: RecordKind, record_id: str) -> str:
        return f"{KEY_PREFIX}:{kind.value}:{record_id}"

    async def connect(self) -> None:
        """Connect to Redis."""
        if self.url:
            self._redis = redis.Redis.from_url(self.url, decode_responses=True)
        else:
            self._redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
        try:
            await self._redis.ping()
        except RedisError as e:
            raise StoreUnavailable(f"Cannot reach Redis: {e}") from e

    async def close(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    # ------------------------------------------------------------------
    async def get(self, kind: RecordKind, record_id: str) -> Optional[StoredRecord]:
        client = await self._client()
        try:
            data = await client.get(self.key(kind, record_id))
        except RedisError as e:
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
        client = await self._client()
        key = self.key(kind, record.id)
        try:
            async with client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = await pipe.get(key)
                actual = json.loads(current)["version"] if current is not None else None
                if expected_version is not None and (actual or 0) != expected_version:
                    raise ConcurrentUpdateError(
                        kind.value, record.id, expected_version, actual
                    )
                new_version = (actual or 0) + 1
                data = record.model_copy(update={"version": new_version}).model_dump_json()
                pipe.multi()
                pipe.set(key, data, ex=ttl or None)
                await pipe.execute()
        except WatchError as e:
            raise ConcurrentUpdateError(kind.value, record.id, expected_version, None) from e
        except RedisError as e:
            raise StoreUnavailable(str(e)) from e
        record.version = new_version
        return record

    async def delete(self, kind: RecordKind, record_id: str) -> None:
        client = await self._client()
        try:
            await client.delete(self.key(kind, record_id))
        except RedisError as e:
            raise StoreUnavailable(str(e)) from e

    async def list(self, kind: RecordKind) -> List[StoredRecord]:
        client = await self._client()
        records: List[StoredRecord] = []
        try:
            async for key in client.scan_iter(match=f"{KEY_PREFIX}:{kind.value}:*"):
                data = await client.get(key)
                # keys can expire between scan and get
                if data is not None:
                    records.append(self.decode(kind, data))
        except RedisError as e:
            raise StoreUnavailable(str(e)) from e
        return records
