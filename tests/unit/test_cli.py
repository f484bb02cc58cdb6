import asyncio

import pytest
from typer.testing import CliRunner

import shipyard.persistence as persistence
from shipyard.cli import app
from shipyard.persistence import InMemoryStateStore
from shipyard.persistence.store import RecordKind

UNITS = "tests.fixtures.units:build_units"


@pytest.fixture
def store(tmp_path, monkeypatch):
    monkeypatch.setenv("SHIPYARD_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("SHIPYARD_CHANNEL", raising=False)
    monkeypatch.delenv("SHIPYARD_STORE_URL", raising=False)
    repo = InMemoryStateStore()
    monkeypatch.setattr(persistence, "_store_instance", repo)
    return repo


def _run_workflow(runner, mode="placement"):
    return runner.invoke(
        app,
        [
            "workflow",
            "run",
            "https://github.com/acme/rocket",
            "--owner",
            "acme",
            "--name",
            "rocket",
            "--mode",
            mode,
            "--credentials",
            "token-123",
            "--units",
            UNITS,
        ],
    )


def test_mode_commands():
    runner = CliRunner()
    result = runner.invoke(app, ["mode", "list"])
    assert result.exit_code == 0, result.stdout
    assert "hackathon\tHackathon" in result.stdout

    result = runner.invoke(app, ["mode", "show", "placement"])
    assert result.exit_code == 0, result.stdout
    assert "- docs: 3 (critical)" in result.stdout
    assert "- pitch: 1 (optional)" in result.stdout

    result = runner.invoke(app, ["mode", "show", "speedrun"])
    assert result.exit_code == 1


def test_workflow_list_empty(store):
    result = CliRunner().invoke(app, ["workflow", "list"])
    assert result.exit_code == 0, result.stdout
    assert "No workflows found" in result.stdout


def test_run_then_approve_workflow(store):
    runner = CliRunner()

    result = _run_workflow(runner)
    assert result.exit_code == 0, f"Output: {result.stdout} {result.exception}"
    assert "waiting_approval" in result.stdout

    [workflow] = asyncio.run(store.list(RecordKind.WORKFLOW))
    [gate] = asyncio.run(store.list(RecordKind.APPROVAL_GATE))
    assert f"Waiting on gate: {gate.id}" in result.stdout

    result = runner.invoke(app, ["workflow", "list"])
    assert f"{workflow.id}\tplacement\twaiting_approval" in result.stdout

    result = runner.invoke(app, ["gate", "show", gate.id])
    assert result.exit_code == 0, result.stdout
    assert f"Gate {gate.id} (terminal, terminal): pending" in result.stdout
    assert "- readme" in result.stdout

    result = runner.invoke(app, ["gate", "respond", gate.id, "--approve", "--units", UNITS])
    assert result.exit_code == 0, f"Output: {result.stdout} {result.exception}"
    assert f"Gate {gate.id}: approved" in result.stdout
    assert f"Workflow {workflow.id}: completed" in result.stdout

    result = runner.invoke(app, ["workflow", "show", workflow.id])
    assert "- terminal: completed" in result.stdout

    result = runner.invoke(app, ["workflow", "summary", workflow.id])
    assert "Workflow completed successfully" in result.stdout

    # a second response is refused
    result = runner.invoke(app, ["gate", "respond", gate.id, "--reject", "--units", UNITS])
    assert result.exit_code == 1
    assert "already" in result.stdout


def test_run_warns_when_state_is_not_persisted(store, tmp_path, monkeypatch):
    runner = CliRunner()
    result = _run_workflow(runner)
    assert result.exit_code == 0, result.stdout
    assert "No SHIPYARD_STORE_URL set" in result.stdout

    monkeypatch.setenv("SHIPYARD_STORE_URL", f"sqlite://{tmp_path / 'state.db'}")
    result = _run_workflow(runner)
    assert result.exit_code == 0, result.stdout
    assert "No SHIPYARD_STORE_URL set" not in result.stdout


def test_retry_refused_for_running_workflow(store):
    runner = CliRunner()
    _run_workflow(runner, mode="hackathon")
    [workflow] = asyncio.run(store.list(RecordKind.WORKFLOW))

    result = runner.invoke(app, ["workflow", "retry", workflow.id, "--units", UNITS])
    assert result.exit_code == 1
    assert "Cannot retry workflow: Workflow is not in failed state" in result.stdout


def test_missing_records_and_bad_units(store):
    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "show", "wf_missing"])
    assert result.exit_code == 1
    assert "Workflow not found" in result.stdout

    result = runner.invoke(app, ["gate", "show", "gate_missing"])
    assert result.exit_code == 1
    assert "Gate not found" in result.stdout

    result = runner.invoke(app, ["workflow", "retry", "wf_missing", "--units", "nowhere"])
    assert result.exit_code == 1
    assert "module:callable" in result.stdout
