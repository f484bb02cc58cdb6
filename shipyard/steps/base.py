"""Step unit contract and the timeout wrapper around it."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from ..constants import CANCEL_GRACE_PERIOD
from ..contracts import StepContext, StepResult, StepStatus, StepType
from ..errors import StepTimeout

logger = logging.getLogger(__name__)


@runtime_checkable
class StepUnit(Protocol):
    """One stage of the workflow.

    Implementations read whatever they need from ``context`` (including the
    results of earlier steps) and return a :class:`StepResult`. They must not
    persist anything themselves.
    """

    step: StepType

    async def execute(self, context: StepContext) -> StepResult:
        ...


def success_result(
    step: StepType,
    artifacts: List[Any],
    metadata: Optional[Dict[str, Any]] = None,
    duration: float = 0.0,
) -> StepResult:
    return StepResult(
        step=step,
        status=StepStatus.COMPLETED,
        artifacts=artifacts,
        duration=duration,
        metadata=metadata or {},
    )


def failure_result(
    step: StepType,
    error: str,
    metadata: Optional[Dict[str, Any]] = None,
    duration: float = 0.0,
) -> StepResult:
    return StepResult(
        step=step,
        status=StepStatus.FAILED,
        artifacts=[],
        error=error,
        duration=duration,
        metadata=metadata or {},
    )


def validate_step_result(value: Any) -> Optional[StepResult]:
    """Return ``value`` as a StepResult if it is structurally valid.

    A result is valid iff it names a step type, has a recognised status and,
    when completed, carries an artifact list (possibly empty, never null).
    Mappings are parsed; anything else is invalid.
    """
    if isinstance(value, StepResult):
        result = value
    elif isinstance(value, dict):
        try:
            result = StepResult.model_validate(value)
        except ValidationError:
            return None
    else:
        return None

    if not result.step:
        return None
    if result.status == StepStatus.COMPLETED and result.artifacts is None:
        return None
    return result


def _with_duration(raw: Any, duration: float) -> Any:
    if isinstance(raw, StepResult):
        return raw.model_copy(update={"duration": duration})
    if isinstance(raw, dict):
        return {**raw, "duration": duration}
    return raw


def _exception_result(step: StepType, error: BaseException, duration: float) -> StepResult:
    logger.warning(f"Step {step.value} raised {type(error).__name__}: {error}")
    return failure_result(
        step,
        str(error) or type(error).__name__,
        metadata={"exception": type(error).__name__},
        duration=duration,
    )


async def execute_with_timeout(
    unit: StepUnit,
    context: StepContext,
    budget: float,
    grace: float = CANCEL_GRACE_PERIOD,
) -> Any:
    """Run ``unit`` against ``context`` for at most ``budget`` seconds.

    The step runs in its own task. If the budget expires first the task is
    cancelled and a failed StepResult is returned; the task gets ``grace``
    seconds to unwind before it is abandoned. Exceptions raised by the unit
    also become failed results. Whatever the unit returned is passed through
    untouched apart from the measured duration, so callers still need
    :func:`validate_step_result`.
    """
    step = unit.step
    scoped = context.model_copy(update={"deadline": time.monotonic() + budget})
    started = time.monotonic()
    try:
        task = asyncio.ensure_future(unit.execute(scoped))
    except Exception as exc:
        # execute raised before producing an awaitable, or is not async at all
        return _exception_result(step, exc, time.monotonic() - started)

    try:
        done, _ = await asyncio.wait({task}, timeout=budget)
    except asyncio.CancelledError:
        task.cancel()
        raise

    duration = time.monotonic() - started
    if task not in done:
        task.cancel()
        await asyncio.wait({task}, timeout=grace)
        if not task.done():
            logger.warning(f"Step {step.value} ignored cancellation; abandoning it")
        elif not task.cancelled():
            # Retrieve the outcome so it is not reported as unhandled.
            task.exception()
        timeout = StepTimeout(step.value, budget)
        logger.warning(timeout.message)
        return failure_result(
            step, timeout.message, metadata={"timeout": True}, duration=duration
        )

    if task.cancelled():
        return failure_result(
            step, f"Step {step.value} was cancelled", metadata={"cancelled": True},
            duration=duration,
        )

    error = task.exception()
    if error is not None:
        return _exception_result(step, error, duration)

    return _with_duration(task.result(), duration)
