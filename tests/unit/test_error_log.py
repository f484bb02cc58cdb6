import pytest

from shipyard.contracts import ErrorLogEntry, StepType
from shipyard.error_log import (
    cleanup_old_errors,
    format_error_for_display,
    get_error,
    get_workflow_errors,
    is_recoverable_error,
    log_step_error,
    log_system_error,
)
from shipyard.persistence import InMemoryStateStore
from shipyard.persistence.store import RecordKind


@pytest.mark.asyncio
async def test_step_and_system_errors_are_stored(caplog):
    store = InMemoryStateStore()
    step_error_id = await log_step_error(store, "wf_1", StepType.DEMO, RuntimeError("deploy failed"))
    system_error_id = await log_system_error(store, "wf_1", "Retry request denied", "max reached")

    step_entry = await get_error(store, step_error_id)
    assert step_entry.step == StepType.DEMO
    assert step_entry.message == "deploy failed"
    assert step_entry.details == "RuntimeError('deploy failed')"
    assert step_entry.recoverable

    system_entry = await get_error(store, system_error_id)
    assert system_entry.step is None
    assert not system_entry.recoverable
    assert "[demo] deploy failed" in caplog.text


@pytest.mark.asyncio
async def test_workflow_errors_newest_first_and_cleanup():
    store = InMemoryStateStore()
    for error_id, workflow_id, timestamp in [
        ("err_old", "wf_1", 1000.0),
        ("err_new", "wf_1", 2000.0),
        ("err_other", "wf_2", 1500.0),
    ]:
        await store.put(
            RecordKind.ERROR_LOG,
            ErrorLogEntry(id=error_id, workflow_id=workflow_id, message="x", timestamp=timestamp),
        )

    assert [e.id for e in await get_workflow_errors(store, "wf_1")] == ["err_new", "err_old"]

    removed = await cleanup_old_errors(store, older_than_days=1, now=1000.0 + 86400 + 600)
    assert removed == 2
    assert [e.id for e in await store.list(RecordKind.ERROR_LOG)] == ["err_new"]


def test_recoverable_error_heuristic():
    assert is_recoverable_error(TimeoutError("Request timed out"))
    assert is_recoverable_error("GitHub rate limit exceeded")
    assert not is_recoverable_error(ValueError("invalid repository layout"))


def test_format_error_for_display():
    entry = ErrorLogEntry(
        id="err_1",
        workflow_id="wf_1",
        step=StepType.DOCS,
        message="LLM unavailable",
        details="503",
        recoverable=True,
    )
    text = format_error_for_display(entry)
    assert "DOCS - Recoverable" in text
    assert "Message: LLM unavailable" in text
