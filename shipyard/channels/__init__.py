"""Event channel factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ShipyardConfig, load_config
from .base import BaseChannel, NullChannel
from .inmemory import InMemoryChannel


def get_channel(
    backend: Optional[str] = None, config: Optional[ShipyardConfig] = None
) -> BaseChannel:
    """Factory function to get the configured event channel."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("SHIPYARD_CHANNEL")
        or config.channel.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryChannel(queue_size=config.channel.queue_size)
    elif backend == "redis":
        from .redis import RedisChannel

        redis_conf = config.channel.redis
        return RedisChannel(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    elif backend == "null":
        return NullChannel()
    else:
        raise ValueError(f"Unsupported channel backend: {backend}")


__all__ = ["BaseChannel", "InMemoryChannel", "NullChannel", "get_channel"]
