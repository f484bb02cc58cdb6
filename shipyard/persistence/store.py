"""State store abstraction for sessions, workflows and approval gates."""

from __future__ import annotations

import abc
import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type

from ..constants import APPROVAL_GATE_TTL, ERROR_LOG_TTL, SESSION_TTL, WORKFLOW_TTL
from ..contracts import (
    ApprovalGate,
    ErrorLogEntry,
    SessionRecord,
    StoredRecord,
    WorkflowRecord,
)
from ..errors import ConcurrentUpdateError, RecordNotFound

logger = logging.getLogger(__name__)


class RecordKind(str, Enum):
    SESSION = "session"
    WORKFLOW = "workflow"
    APPROVAL_GATE = "approval_gate"
    ERROR_LOG = "error_log"


RECORD_MODELS: Dict[RecordKind, Type[StoredRecord]] = {
    RecordKind.SESSION: SessionRecord,
    RecordKind.WORKFLOW: WorkflowRecord,
    RecordKind.APPROVAL_GATE: ApprovalGate,
    RecordKind.ERROR_LOG: ErrorLogEntry,
}

DEFAULT_TTLS: Dict[RecordKind, int] = {
    RecordKind.SESSION: SESSION_TTL,
    RecordKind.WORKFLOW: WORKFLOW_TTL,
    RecordKind.APPROVAL_GATE: APPROVAL_GATE_TTL,
    RecordKind.ERROR_LOG: ERROR_LOG_TTL,
}

UPDATE_ATTEMPTS = 5


class StateStore(metaclass=abc.ABCMeta):
    """Key/value persistence with per-record TTL and versioned writes.

    Every record carries a ``version``. ``put`` without ``expected_version``
    is last-write-wins; with it, the write only lands if the stored version
    still matches, otherwise :class:`ConcurrentUpdateError` is raised. A
    successful ``put`` increments the version on the record it was given.
    """

    def __init__(self, ttls: Optional[Mapping[RecordKind, int]] = None) -> None:
        self._ttls: Dict[RecordKind, int] = dict(DEFAULT_TTLS)
        if ttls:
            self._ttls.update(ttls)

    def ttl_for(self, kind: RecordKind) -> int:
        return self._ttls[kind]

    @staticmethod
    def decode(kind: RecordKind, data: str) -> StoredRecord:
        return RECORD_MODELS[kind].model_validate_json(data)

    async def connect(self) -> None:
        """Open backend connections (no-op by default)."""
        pass

    async def close(self) -> None:
        """Release backend connections (no-op by default)."""
        pass

    @abc.abstractmethod
    async def get(self, kind: RecordKind, record_id: str) -> Optional[StoredRecord]:
        """Return the live record or ``None`` if missing or expired."""
        raise NotImplementedError

    @abc.abstractmethod
    async def put(
        self,
        kind: RecordKind,
        record: StoredRecord,
        ttl: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> StoredRecord:
        """Write ``record``, replacing any previous value, and reset its TTL."""
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, kind: RecordKind, record_id: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def list(self, kind: RecordKind) -> List[StoredRecord]:
        """Return all live records of ``kind``."""
        raise NotImplementedError

    async def update(
        self,
        kind: RecordKind,
        record_id: str,
        partial: Mapping[str, Any],
        ttl: Optional[int] = None,
    ) -> StoredRecord:
        """Merge ``partial`` into the stored record.

        Implemented as get, merge, compare-and-swap put. A lost race re-reads
        and re-merges, so concurrent partial updates are not silently dropped.
        """
        for attempt in range(1, UPDATE_ATTEMPTS + 1):
            current = await self.get(kind, record_id)
            if current is None:
                raise RecordNotFound(kind.value, record_id)
            merged = type(current).model_validate(
                {**current.model_dump(), **dict(partial)}
            )
            merged.version = current.version
            try:
                return await self.put(
                    kind, merged, ttl=ttl, expected_version=current.version
                )
            except ConcurrentUpdateError:
                if attempt == UPDATE_ATTEMPTS:
                    raise
                logger.debug(
                    f"Concurrent update of {kind.value} {record_id}, retrying merge"
                )
        raise AssertionError("unreachable")
