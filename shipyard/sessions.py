"""Session records: which repository a user is working on, and with what."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from .constants import SESSION_TTL
from .contracts import Mode, RepositoryMetadata, SessionRecord, generate_id
from .errors import SessionNotFound
from .persistence.store import RecordKind, StateStore
from .policy import parse_mode

logger = logging.getLogger(__name__)


class SessionState(BaseModel):
    """What a client needs to pick up where it left off."""

    session_id: Optional[str] = None
    workflow_id: Optional[str] = None
    valid: bool = False


class SessionManager:
    """Create and maintain :class:`SessionRecord` entries in the store."""

    def __init__(
        self,
        store: StateStore,
        ttl: int = SESSION_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self._clock = clock

    async def create_session(
        self,
        repository_url: str,
        credentials: Optional[str],
        repository: Optional[RepositoryMetadata] = None,
    ) -> SessionRecord:
        now = self._clock()
        session = SessionRecord(
            id=generate_id("sess_"),
            repository_url=repository_url,
            repository=repository,
            credentials=credentials,
            created_at=now,
            expires_at=now + self.ttl,
        )
        await self.store.put(RecordKind.SESSION, session, ttl=self.ttl)
        logger.info(f"Created session {session.id} for {repository_url}")
        return session

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        session = await self.store.get(RecordKind.SESSION, session_id)
        if session is None or not self.is_session_valid(session):
            return None
        return session

    async def require_session(self, session_id: str) -> SessionRecord:
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found or expired")
        return session

    async def update_session(self, session_id: str, updates: Dict[str, Any]) -> SessionRecord:
        session = await self.require_session(session_id)
        # the store entry lives exactly as long as the session is valid
        expires_at = updates.get("expires_at", session.expires_at)
        ttl = max(1, int(expires_at - self._clock()))
        return await self.store.update(RecordKind.SESSION, session_id, updates, ttl=ttl)

    async def attach_repository(
        self, session_id: str, repository: RepositoryMetadata
    ) -> SessionRecord:
        return await self.update_session(session_id, {"repository": repository.model_dump()})

    async def select_mode(self, session_id: str, mode: Mode | str) -> SessionRecord:
        return await self.update_session(session_id, {"mode": parse_mode(mode)})

    async def link_workflow(self, session_id: str, workflow_id: str) -> SessionRecord:
        return await self.update_session(session_id, {"workflow_id": workflow_id})

    async def extend_session(self, session_id: str) -> SessionRecord:
        return await self.update_session(
            session_id, {"expires_at": self._clock() + self.ttl}
        )

    async def delete_session(self, session_id: str) -> None:
        await self.store.delete(RecordKind.SESSION, session_id)

    async def restore_state(self, session_id: Optional[str]) -> SessionState:
        session = await self.get_session(session_id) if session_id else None
        if session is None:
            return SessionState()
        return SessionState(
            session_id=session.id, workflow_id=session.workflow_id, valid=True
        )

    def is_session_valid(self, session: Optional[SessionRecord]) -> bool:
        if session is None:
            return False
        return self._clock() < session.expires_at

    def get_expiration_warning(self, session: SessionRecord) -> Optional[str]:
        remaining = session.expires_at - self._clock()
        if remaining < 5 * 60:
            return "Your session will expire in less than 5 minutes"
        if remaining < 15 * 60:
            return "Your session will expire in less than 15 minutes"
        return None
