"""Error log kept in the state store alongside workflow records."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import List, Optional

from .contracts import ErrorLogEntry, StepType, generate_id
from .persistence.store import RecordKind, StateStore

logger = logging.getLogger(__name__)

RECOVERABLE_MARKERS = ("network", "timeout", "timed out", "rate limit", "auth", "token")


async def log_error(
    store: StateStore,
    workflow_id: str,
    message: str,
    details: str = "",
    step: Optional[StepType] = None,
    recoverable: bool = False,
) -> str:
    """Persist an error entry and mirror it to the logger. Returns its id."""
    entry = ErrorLogEntry(
        id=generate_id("err_"),
        workflow_id=workflow_id,
        step=step,
        message=message,
        details=details,
        recoverable=recoverable,
    )
    await store.put(RecordKind.ERROR_LOG, entry)
    source = step.value if step else "system"
    logger.error(
        f"[{source}] {message} (workflow={workflow_id}, recoverable={recoverable})"
    )
    return entry.id


async def log_step_error(
    store: StateStore,
    workflow_id: str,
    step: StepType,
    error: BaseException | str,
    recoverable: bool = True,
) -> str:
    message = str(error)
    details = repr(error) if isinstance(error, BaseException) else message
    return await log_error(
        store, workflow_id, message, details, step=step, recoverable=recoverable
    )


async def log_system_error(
    store: StateStore,
    workflow_id: str,
    message: str,
    details: str,
    recoverable: bool = False,
) -> str:
    return await log_error(store, workflow_id, message, details, recoverable=recoverable)


async def get_error(store: StateStore, error_id: str) -> Optional[ErrorLogEntry]:
    return await store.get(RecordKind.ERROR_LOG, error_id)


async def get_workflow_errors(store: StateStore, workflow_id: str) -> List[ErrorLogEntry]:
    """All logged errors for ``workflow_id``, newest first."""
    entries = [
        e for e in await store.list(RecordKind.ERROR_LOG) if e.workflow_id == workflow_id
    ]
    return sorted(entries, key=lambda e: e.timestamp, reverse=True)


async def cleanup_old_errors(
    store: StateStore, older_than_days: float = 7, now: Optional[float] = None
) -> int:
    cutoff = (now if now is not None else time.time()) - older_than_days * 24 * 60 * 60
    deleted = 0
    for entry in await store.list(RecordKind.ERROR_LOG):
        if entry.timestamp < cutoff:
            await store.delete(RecordKind.ERROR_LOG, entry.id)
            deleted += 1
    return deleted


def is_recoverable_error(error: BaseException | str) -> bool:
    """Heuristic: network, timeout, rate-limit and auth problems may clear up."""
    message = str(error).lower()
    return any(marker in message for marker in RECOVERABLE_MARKERS)


def format_error_for_display(entry: ErrorLogEntry) -> str:
    source = entry.step.value.upper() if entry.step else "SYSTEM"
    when = datetime.fromtimestamp(entry.timestamp).strftime("%Y-%m-%d %H:%M:%S")
    kind = "Recoverable" if entry.recoverable else "Fatal"
    return f"[{when}] {source} - {kind}\nMessage: {entry.message}\nDetails: {entry.details}"
