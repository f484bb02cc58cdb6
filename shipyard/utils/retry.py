from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ..constants import MAX_STEP_RETRIES
from ..contracts import StepType, WorkflowRecord, WorkflowStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff settings."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``policy.max_attempts`` times.

    Between attempts the delay starts at ``initial_delay`` and is multiplied
    by ``backoff_multiplier`` after every failure, capped at ``max_delay``.
    Errors not matching ``retry_on`` propagate immediately. When every
    attempt fails the last error is re-raised.
    """
    policy = policy or RetryPolicy()
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delay = policy.initial_delay
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                raise
            logger.info(f"Attempt {attempt} failed ({e}), retrying in {delay:.2f}s")
            await sleep(delay)
            delay = min(delay * policy.backoff_multiplier, policy.max_delay)
            attempt += 1


def retry_key(step: StepType) -> str:
    return f"{step.value}_retry"


def get_retry_count(workflow: WorkflowRecord, step: StepType) -> int:
    """Number of manual retries recorded for ``step`` in the timestamp log."""
    prefix = retry_key(step)
    return sum(1 for key in workflow.timestamps if key.startswith(prefix))


def retry_denial_reason(workflow: WorkflowRecord) -> Optional[str]:
    """Why ``workflow`` cannot be retried, or ``None`` when it can."""
    if workflow.status != WorkflowStatus.FAILED:
        return "Workflow is not in failed state"
    if workflow.error is not None and not workflow.error.recoverable:
        return "Error is not recoverable"
    failed_step = workflow.error.step if workflow.error else None
    if failed_step is None:
        return "Cannot determine failed step"
    if get_retry_count(workflow, failed_step) >= MAX_STEP_RETRIES:
        return "Maximum retry attempts reached"
    return None


def can_retry(workflow: WorkflowRecord) -> bool:
    return retry_denial_reason(workflow) is None
