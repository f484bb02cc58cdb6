"""Base event channel interface."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Optional

from ..contracts import WorkflowEvent


class BaseChannel(metaclass=abc.ABCMeta):
    """Push-only notification of workflow progress.

    ``emit`` is fire-and-forget: it never blocks on subscribers and never
    raises for delivery problems. There is no acknowledgement.
    """

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def emit(self, event: WorkflowEvent) -> None:
        """Deliver ``event`` to current subscribers, best effort."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, workflow_id: Optional[str] = None, lifespan: Optional[float] = None
    ) -> AsyncIterator[WorkflowEvent]:
        """Yield events, optionally only those for ``workflow_id``.

        Args:
            workflow_id: Restrict to one workflow. ``None`` receives everything.
            lifespan: Maximum time in seconds to listen. If None, runs indefinitely.
        """
        raise NotImplementedError


class NullChannel(BaseChannel):
    """Discards every event."""

    async def emit(self, event: WorkflowEvent) -> None:
        pass

    async def subscribe(
        self, workflow_id: Optional[str] = None, lifespan: Optional[float] = None
    ) -> AsyncIterator[WorkflowEvent]:
        return
        yield
