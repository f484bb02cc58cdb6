"""In-process event channel."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import AsyncIterator, Deque, List, Optional, Tuple

from ..contracts import EventType, WorkflowEvent
from .base import BaseChannel

logger = logging.getLogger(__name__)

# Events that end a workflow's stream for a filtered subscriber.
FINAL_EVENTS = {EventType.PIPELINE_COMPLETED, EventType.PIPELINE_FAILED}


class InMemoryChannel(BaseChannel):
    """Fan events out to per-subscriber bounded queues.

    A subscriber whose queue is full misses events rather than slowing the
    orchestrator down. The most recent events are kept in ``history`` so a
    late observer can catch up.
    """

    def __init__(self, queue_size: int = 100, history_size: int = 1000) -> None:
        self._queue_size = queue_size
        self.history: Deque[WorkflowEvent] = deque(maxlen=history_size)
        self._subscribers: List[Tuple[Optional[str], asyncio.Queue]] = []
        self.dropped = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def emit(self, event: WorkflowEvent) -> None:
        self.history.append(event)
        for workflow_id, queue in list(self._subscribers):
            if workflow_id is not None and workflow_id != event.workflow_id:
                continue
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.warning(
                    f"Dropped {event.type.value} event for workflow {event.workflow_id}: "
                    "subscriber queue full"
                )

    async def subscribe(
        self, workflow_id: Optional[str] = None, lifespan: Optional[float] = None
    ) -> AsyncIterator[WorkflowEvent]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        entry = (workflow_id, queue)
        self._subscribers.append(entry)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None
        try:
            while True:
                timeout = None
                if deadline is not None:
                    timeout = deadline - loop.time()
                    if timeout <= 0:
                        break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout)
                except asyncio.TimeoutError:
                    break
                yield event
                if workflow_id is not None and event.type in FINAL_EVENTS:
                    break
        finally:
            self._subscribers.remove(entry)
