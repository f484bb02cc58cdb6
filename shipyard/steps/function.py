"""Step units backed by plain async functions."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from ..contracts import StepContext, StepResult, StepType
from .base import success_result

StepFunction = Callable[[StepContext], Awaitable[Any]]


class FunctionStep:
    """Adapt an ``async def fn(context)`` to the step unit contract.

    ``fn`` may return a full :class:`StepResult` or just a list of
    artifacts, which is wrapped in a completed result. Any other return
    value is handed back unchanged and left to output validation.
    """

    def __init__(self, step: StepType | str, fn: StepFunction, name: Optional[str] = None):
        self.step = StepType(step)
        self._fn = fn
        self.name = name or getattr(fn, "__name__", self.step.value)

    async def execute(self, context: StepContext) -> StepResult:
        value = await self._fn(context)
        if isinstance(value, list):
            return success_result(self.step, value)
        return value

    def __repr__(self) -> str:
        return f"FunctionStep({self.step.value!r}, {self.name!r})"


def step(step_type: StepType | str) -> Callable[[StepFunction], FunctionStep]:
    """Decorator turning an async function into a :class:`FunctionStep`."""

    def decorator(fn: StepFunction) -> FunctionStep:
        return FunctionStep(step_type, fn)

    return decorator
