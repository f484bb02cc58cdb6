import pytest

from shipyard.contracts import Mode, StepType, WorkflowError, WorkflowRecord, WorkflowStatus
from shipyard.utils.retry import (
    RetryPolicy,
    can_retry,
    get_retry_count,
    retry_denial_reason,
    retry_with_backoff,
)


class Recorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_retry_with_backoff_grows_delay_up_to_cap():
    sleep = Recorder()
    calls = []

    async def always_fails():
        calls.append(1)
        raise ConnectionError(f"attempt {len(calls)}")

    policy = RetryPolicy(max_attempts=4, initial_delay=1.0, max_delay=3.0, backoff_multiplier=2.0)
    with pytest.raises(ConnectionError, match="attempt 4"):
        await retry_with_backoff(always_fails, policy, sleep=sleep)

    assert len(calls) == 4
    assert sleep.delays == [1.0, 2.0, 3.0]


@pytest.mark.asyncio
async def test_retry_with_backoff_returns_first_success():
    sleep = Recorder()
    outcomes = [TimeoutError("slow"), "ok"]

    async def flaky():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert await retry_with_backoff(flaky, RetryPolicy(initial_delay=0.5), sleep=sleep) == "ok"
    assert sleep.delays == [0.5]


@pytest.mark.asyncio
async def test_retry_with_backoff_does_not_retry_unlisted_errors():
    sleep = Recorder()
    calls = []

    async def broken():
        calls.append(1)
        raise KeyError("bad input")

    with pytest.raises(KeyError):
        await retry_with_backoff(broken, retry_on=(ConnectionError,), sleep=sleep)
    assert len(calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_retry_with_backoff_rejects_zero_attempts():
    async def noop():
        return None

    with pytest.raises(ValueError):
        await retry_with_backoff(noop, RetryPolicy(max_attempts=0))


def _failed_workflow(step=StepType.DOCS, recoverable=True, retries=0):
    workflow = WorkflowRecord(
        id="wf_test",
        session_id="sess_test",
        mode=Mode.PLACEMENT,
        status=WorkflowStatus.FAILED,
        error=WorkflowError(step=step, message="boom", recoverable=recoverable),
    )
    for n in range(1, retries + 1):
        workflow.stamp(f"{step.value}_retry_{n}", 1000.0 + n)
    return workflow


def test_retry_count_is_derived_from_timestamp_keys():
    workflow = _failed_workflow(retries=2)
    workflow.stamp("demo_retry_1", 1.0)
    assert get_retry_count(workflow, StepType.DOCS) == 2
    assert get_retry_count(workflow, StepType.DEMO) == 1
    assert get_retry_count(workflow, StepType.PITCH) == 0


def test_retries_are_bounded_at_three():
    assert can_retry(_failed_workflow(retries=2))
    exhausted = _failed_workflow(retries=3)
    assert not can_retry(exhausted)
    assert retry_denial_reason(exhausted) == "Maximum retry attempts reached"


def test_retry_denied_for_non_failed_or_unrecoverable():
    running = _failed_workflow()
    running.status = WorkflowStatus.RUNNING
    assert retry_denial_reason(running) == "Workflow is not in failed state"

    fatal = _failed_workflow(recoverable=False)
    assert retry_denial_reason(fatal) == "Error is not recoverable"

    unknown = _failed_workflow()
    unknown.error.step = None
    assert retry_denial_reason(unknown) == "Cannot determine failed step"
