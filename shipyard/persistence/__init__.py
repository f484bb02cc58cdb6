"""Persistence layer for shipyard records."""

from __future__ import annotations

import os
from typing import Dict, Optional

from ..config import ShipyardConfig, load_config
from .inmemory import InMemoryStateStore
from .sqlite import SQLiteStateStore
from .store import RECORD_MODELS, RecordKind, StateStore

_store_instance: StateStore | None = None


def _ttls_from_config(config: ShipyardConfig) -> Dict[RecordKind, int]:
    return {
        RecordKind.SESSION: config.ttl.session,
        RecordKind.WORKFLOW: config.ttl.workflow,
        RecordKind.APPROVAL_GATE: config.ttl.approval_gate,
        RecordKind.ERROR_LOG: config.ttl.error_log,
    }


def get_store(
    store_url: Optional[str] = None, config: Optional[ShipyardConfig] = None
) -> StateStore:
    """Factory function to obtain a state store.

    The backend is selected based on ``store_url`` which can be provided
    explicitly, via environment variable ``SHIPYARD_STORE_URL``, or from
    loaded configuration. When no URL is configured, an in-memory store is
    returned.
    """

    global _store_instance
    if _store_instance is not None and store_url is None and config is None:
        return _store_instance

    config = config or load_config()
    store_url = store_url or os.getenv("SHIPYARD_STORE_URL") or config.store.url
    ttls = _ttls_from_config(config)

    if not store_url:
        _store_instance = InMemoryStateStore(ttls=ttls)
        return _store_instance

    if store_url.startswith("sqlite://"):
        path = store_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteStateStore(path, ttls=ttls)
    elif store_url.startswith("redis://") or store_url.startswith("rediss://"):
        from .redis import RedisStateStore

        _store_instance = RedisStateStore(url=store_url, ttls=ttls)
    else:
        raise ValueError(f"Unsupported store backend: {store_url}")

    return _store_instance


__all__ = [
    "RECORD_MODELS",
    "RecordKind",
    "StateStore",
    "InMemoryStateStore",
    "SQLiteStateStore",
    "get_store",
]
