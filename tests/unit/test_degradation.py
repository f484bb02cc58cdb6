from shipyard.contracts import Mode, StepResult, StepStatus, StepType, WorkflowRecord
from shipyard.degradation import (
    CompletionLevel,
    can_continue_with_skipped,
    create_skipped_warning,
    get_completion_status,
    get_skipped_summary,
    next_step,
)
from shipyard.steps.base import failure_result, success_result


def _skipped(step, reason):
    return StepResult(step=step, status=StepStatus.SKIPPED, error=reason)


def _workflow(mode=Mode.PLACEMENT, **slots):
    workflow = WorkflowRecord(id="wf_1", session_id="sess_1", mode=mode)
    for name, result in slots.items():
        workflow.results[StepType(name)] = result
    return workflow


def test_next_step_walks_the_fixed_sequence():
    assert next_step(StepType.ANALYZE) == StepType.DOCS
    assert next_step(StepType.PITCH) == StepType.TERMINAL
    assert next_step(StepType.TERMINAL) is None


def test_skipped_optional_steps_produce_warning():
    workflow = _workflow(
        analyze=success_result(StepType.ANALYZE, []),
        docs=success_result(StepType.DOCS, []),
        demo=_skipped(StepType.DEMO, "Vercel deploy failed"),
        pitch=_skipped(StepType.PITCH, "Step pitch timed out after 45s"),
    )

    summary = get_skipped_summary(workflow)
    assert summary.count == 2
    assert summary.reasons[StepType.DEMO] == "Vercel deploy failed"

    warning = create_skipped_warning(workflow)
    assert warning.startswith("Warning: 2 optional step(s) were skipped: DEMO (Vercel deploy failed)")
    assert "PITCH (Step pitch timed out after 45s)" in warning
    assert can_continue_with_skipped(workflow)

    status = get_completion_status(workflow)
    assert status.level == CompletionLevel.PARTIAL
    assert status.skipped == [StepType.DEMO, StepType.PITCH]


def test_no_warning_when_nothing_skipped():
    workflow = _workflow(analyze=success_result(StepType.ANALYZE, []))
    assert create_skipped_warning(workflow) is None
    assert get_completion_status(workflow).level == CompletionLevel.FULL


def test_failed_critical_step_blocks_continuation():
    workflow = _workflow(
        analyze=success_result(StepType.ANALYZE, []),
        docs=failure_result(StepType.DOCS, "LLM unavailable"),
    )
    assert not can_continue_with_skipped(workflow)
    status = get_completion_status(workflow)
    assert status.level == CompletionLevel.FAILED
    assert status.message == "Workflow failed at DOCS step"
