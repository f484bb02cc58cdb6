"""Redis pub/sub event channel for cross-process dashboards."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

try:
    import redis.asyncio as redis
    from redis.exceptions import RedisError
except ImportError:
    redis = None

from ..contracts import WorkflowEvent
from .base import BaseChannel
from .inmemory import FINAL_EVENTS

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "shipyard:events"


class RedisChannel(BaseChannel):
    """Publish events on ``shipyard:events:<workflow_id>``."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisChannel")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = client

    @staticmethod
    def channel_name(workflow_id: str) -> str:
        return f"{CHANNEL_PREFIX}:{workflow_id}"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def emit(self, event: WorkflowEvent) -> None:
        """Publish ``event``. Delivery errors are logged, never raised."""
        try:
            if not self._redis:
                await self.connect()
            await self._redis.publish(self.channel_name(event.workflow_id), event.to_json())
        except (RedisError, OSError) as e:
            logger.warning(
                f"Failed to publish {event.type.value} for workflow {event.workflow_id}: {e}"
            )

    async def subscribe(
        self, workflow_id: Optional[str] = None, lifespan: Optional[float] = None
    ) -> AsyncIterator[WorkflowEvent]:
        if not self._redis:
            await self.connect()

        pubsub = self._redis.pubsub()
        if workflow_id is None:
            await pubsub.psubscribe(f"{CHANNEL_PREFIX}:*")
        else:
            await pubsub.subscribe(self.channel_name(workflow_id))

        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None
        try:
            while True:
                if lifespan and start_time:
                    if loop.time() - start_time >= lifespan:
                        break

                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
                if message is None:
                    continue
                try:
                    event = WorkflowEvent.from_json(message["data"])
                except ValueError as e:
                    logger.warning(f"Failed to parse event: {e}")
                    continue
                yield event
                if workflow_id is not None and event.type in FINAL_EVENTS:
                    break
        finally:
            await pubsub.aclose()
