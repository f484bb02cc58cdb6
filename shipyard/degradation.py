"""Graceful degradation: reporting on optional steps that were skipped."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .contracts import STEP_SEQUENCE, StepStatus, StepType, WorkflowRecord
from .policy import is_critical


class CompletionLevel(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    FAILED = "failed"


class SkippedSummary(BaseModel):
    skipped: List[StepType] = Field(default_factory=list)
    reasons: Dict[StepType, str] = Field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.skipped)


class CompletionStatus(BaseModel):
    level: CompletionLevel
    completed: List[StepType] = Field(default_factory=list)
    skipped: List[StepType] = Field(default_factory=list)
    failed: List[StepType] = Field(default_factory=list)
    message: str


def next_step(current: StepType) -> Optional[StepType]:
    """The step after ``current`` in the fixed sequence, or ``None``."""
    index = STEP_SEQUENCE.index(current)
    if index == len(STEP_SEQUENCE) - 1:
        return None
    return STEP_SEQUENCE[index + 1]


def can_continue_with_skipped(workflow: WorkflowRecord) -> bool:
    """False once any critical step has a failed or skipped slot."""
    for step in STEP_SEQUENCE:
        result = workflow.result_for(step)
        if result is None or not is_critical(workflow.mode, step):
            continue
        if result.status in (StepStatus.FAILED, StepStatus.SKIPPED):
            return False
    return True


def get_skipped_summary(workflow: WorkflowRecord) -> SkippedSummary:
    summary = SkippedSummary()
    for step in STEP_SEQUENCE:
        result = workflow.result_for(step)
        if result is not None and result.status == StepStatus.SKIPPED:
            summary.skipped.append(step)
            summary.reasons[step] = result.error or "Unknown reason"
    return summary


def create_skipped_warning(workflow: WorkflowRecord) -> Optional[str]:
    """Human-readable warning listing skipped optional steps and why."""
    summary = get_skipped_summary(workflow)
    if summary.count == 0:
        return None
    details = "; ".join(
        f"{step.value.upper()} ({summary.reasons[step]})" for step in summary.skipped
    )
    return (
        f"Warning: {summary.count} optional step(s) were skipped: {details}. "
        "The workflow continued with the remaining steps."
    )


def get_completion_status(workflow: WorkflowRecord) -> CompletionStatus:
    completed: List[StepType] = []
    skipped: List[StepType] = []
    failed: List[StepType] = []
    for step in STEP_SEQUENCE:
        result = workflow.result_for(step)
        if result is None:
            continue
        if result.succeeded:
            completed.append(step)
        elif result.status == StepStatus.SKIPPED:
            skipped.append(step)
        else:
            failed.append(step)

    if failed:
        level = CompletionLevel.FAILED
        message = f"Workflow failed at {failed[0].value.upper()} step"
    elif skipped:
        level = CompletionLevel.PARTIAL
        message = f"Workflow completed with {len(skipped)} optional step(s) skipped"
    else:
        level = CompletionLevel.FULL
        message = "Workflow completed successfully"

    return CompletionStatus(
        level=level,
        completed=completed,
        skipped=skipped,
        failed=failed,
        message=message,
    )
