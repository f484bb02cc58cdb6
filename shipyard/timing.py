"""Execution timing for steps and whole workflows.

Timings are derived from the workflow's timestamp log, where the
orchestrator records ``<step>_started`` and ``<step>_finished`` for every
invocation.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from .constants import DEFAULT_STEP_TIMEOUT, DEFAULT_STEP_TIMEOUTS, PIPELINE_TIMEOUT
from .contracts import STEP_SEQUENCE, StepType, WorkflowRecord


class StepTiming(BaseModel):
    start: float
    end: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        return None if self.end is None else self.end - self.start


class WorkflowTiming(BaseModel):
    workflow_id: str
    start: float
    end: Optional[float] = None
    steps: Dict[StepType, Optional[StepTiming]] = Field(
        default_factory=lambda: {step: None for step in STEP_SEQUENCE}
    )

    @property
    def total_duration(self) -> Optional[float]:
        return None if self.end is None else self.end - self.start


class PerformanceSummary(BaseModel):
    total_duration: float
    step_durations: Dict[StepType, Optional[float]]
    slowest: Optional[StepType] = None
    fastest: Optional[StepType] = None
    over_time: List[StepType] = Field(default_factory=list)
    within_budget: bool = True


def step_limit(step: StepType, limits: Optional[Mapping[str, float]] = None) -> float:
    limits = DEFAULT_STEP_TIMEOUTS if limits is None else limits
    return limits.get(step.value, DEFAULT_STEP_TIMEOUT)


def is_step_over_time(
    step: StepType, duration: float, limits: Optional[Mapping[str, float]] = None
) -> bool:
    return duration > step_limit(step, limits)


def is_pipeline_over_time(duration: float, limit: float = PIPELINE_TIMEOUT) -> bool:
    return duration > limit


def get_time_remaining(
    step: StepType, elapsed: float, limits: Optional[Mapping[str, float]] = None
) -> float:
    return max(0.0, step_limit(step, limits) - elapsed)


def format_duration(seconds: float) -> str:
    whole = int(seconds)
    minutes, remaining = divmod(whole, 60)
    if minutes > 0:
        return f"{minutes}m {remaining}s"
    return f"{whole}s"


def timing_from_workflow(workflow: WorkflowRecord) -> WorkflowTiming:
    """Rebuild step timings from ``workflow.timestamps``."""
    timing = WorkflowTiming(
        workflow_id=workflow.id,
        start=workflow.started_at,
        end=workflow.completed_at,
    )
    for step in STEP_SEQUENCE:
        start = workflow.timestamps.get(f"{step.value}_started")
        if start is None:
            continue
        timing.steps[step] = StepTiming(
            start=start, end=workflow.timestamps.get(f"{step.value}_finished")
        )
    return timing


def get_performance_summary(
    timing: WorkflowTiming,
    limits: Optional[Mapping[str, float]] = None,
    pipeline_limit: float = PIPELINE_TIMEOUT,
) -> PerformanceSummary:
    durations: Dict[StepType, Optional[float]] = {
        step: (t.duration if t else None) for step, t in timing.steps.items()
    }
    measured = {step: d for step, d in durations.items() if d is not None}
    total = timing.total_duration or 0.0

    return PerformanceSummary(
        total_duration=total,
        step_durations=durations,
        slowest=max(measured, key=measured.get) if measured else None,
        fastest=min(measured, key=measured.get) if measured else None,
        over_time=[s for s, d in measured.items() if is_step_over_time(s, d, limits)],
        within_budget=not is_pipeline_over_time(total, pipeline_limit),
    )


def create_timing_warning(
    step: StepType, duration: float, limits: Optional[Mapping[str, float]] = None
) -> Optional[str]:
    if not is_step_over_time(step, duration, limits):
        return None
    limit = format_duration(step_limit(step, limits))
    return (
        f"{step.value.upper()} step exceeded time limit: "
        f"{format_duration(duration)} (limit: {limit})"
    )


def create_pipeline_timing_warning(
    duration: float, limit: float = PIPELINE_TIMEOUT
) -> Optional[str]:
    if not is_pipeline_over_time(duration, limit):
        return None
    return (
        f"Workflow exceeded time limit: {format_duration(duration)} "
        f"(limit: {format_duration(limit)})"
    )


def estimate_completion_time(
    timing: WorkflowTiming,
    current: Optional[StepType],
    limits: Optional[Mapping[str, float]] = None,
) -> Optional[float]:
    """Projected finish time, using budgets for steps without a measurement."""
    if current is None:
        return None
    estimate = timing.start
    for step in STEP_SEQUENCE:
        step_timing = timing.steps.get(step)
        if step_timing is not None and step_timing.duration is not None:
            estimate += step_timing.duration
        else:
            estimate += step_limit(step, limits)
    return estimate
