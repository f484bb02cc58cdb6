"""Command line interface for inspecting and driving shipyard workflows."""

from __future__ import annotations

import asyncio
import importlib
import logging
from typing import Any, Optional

import typer

from shipyard import Orchestrator, get_store
from shipyard.config import load_config
from shipyard.contracts import STEP_SEQUENCE, Mode, RepositoryMetadata, WorkflowRecord
from shipyard.errors import ShipyardError
from shipyard.orchestrator import build_summary
from shipyard.persistence.store import RecordKind
from shipyard.policy import MODE_POLICIES, get_mode_policy, is_critical
from shipyard.timing import format_duration

app = typer.Typer(help="CLI for shipyard workflows")

# Command groups
mode_app = typer.Typer(help="Inspect execution modes")
workflow_app = typer.Typer(help="Commands for managing workflows")
gate_app = typer.Typer(help="Commands for approval gates")

app.add_typer(mode_app, name="mode")
app.add_typer(workflow_app, name="workflow")
app.add_typer(gate_app, name="gate")

UNITS_HELP = "Step unit factory as 'module:callable' returning the step units"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Shipyard CLI entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_units(spec: str) -> Any:
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        typer.secho("Units must be given as 'module:callable'", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        typer.secho(f"Cannot load step units from {spec}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return factory() if callable(factory) else factory


def _orchestrator(units_spec: str) -> Orchestrator:
    try:
        return Orchestrator(_load_units(units_spec), store=get_store())
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except ShipyardError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_workflow(workflow: WorkflowRecord) -> None:
    typer.echo(f"Workflow {workflow.id}: {workflow.status.value}")
    typer.echo(f"Mode: {workflow.mode.value}")
    if workflow.gate_id:
        typer.echo(f"Waiting on gate: {workflow.gate_id}")
    if workflow.error:
        typer.secho(f"Error: {workflow.error.message}", fg=typer.colors.RED)


@mode_app.command("list")
def mode_list() -> None:
    """List available modes."""
    for mode, policy in MODE_POLICIES.items():
        typer.echo(f"{mode.value}\t{policy.display_name}")


@mode_app.command("show")
def mode_show(mode: str) -> None:
    """
    Show step priorities for a mode.

    Steps with priority 3 or higher are critical; a failure aborts the
    workflow. Lower priorities are optional and skipped on failure.

    Example:
        shipyard mode show placement
        # Output: Placement Mode - Professional documentation ...
        #         - analyze: 2 (critical)
        #         - pitch: 1 (optional)
    """
    try:
        policy = get_mode_policy(mode)
    except ShipyardError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"{policy.display_name} - {policy.description}")
    for step in STEP_SEQUENCE:
        kind = "critical" if is_critical(policy.mode, step) else "optional"
        typer.echo(f"- {step.value}: {policy.priorities.get(step, 0)} ({kind})")


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List all workflows with their current status.

    Example:
        shipyard workflow list
        # Output: wf_0a1b2c3d4e5f6789    hackathon    waiting_approval
    """
    store = get_store()
    workflows = asyncio.run(store.list(RecordKind.WORKFLOW))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in sorted(workflows, key=lambda w: w.started_at):
        typer.echo(f"{wf.id}\t{wf.mode.value}\t{wf.status.value}")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show the step slots of a workflow."""
    store = get_store()
    wf = asyncio.run(store.get(RecordKind.WORKFLOW, workflow_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    _echo_workflow(wf)
    for step in STEP_SEQUENCE:
        result = wf.result_for(step)
        if result is None:
            typer.echo(f"- {step.value}: -")
            continue
        line = f"- {step.value}: {result.status.value} ({format_duration(result.duration)})"
        if result.error:
            line += f" {result.error}"
        typer.echo(line)


@workflow_app.command("summary")
def workflow_summary(workflow_id: str) -> None:
    """Show completion level, skipped steps and timing for a workflow."""
    store = get_store()
    wf = asyncio.run(store.get(RecordKind.WORKFLOW, workflow_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    summary = build_summary(wf, load_config())
    typer.echo(f"Workflow {summary.workflow_id}: {summary.status.value}")
    typer.echo(summary.completion.message)
    if summary.warning:
        typer.secho(summary.warning, fg=typer.colors.YELLOW)
    typer.echo(f"Total time: {format_duration(summary.performance.total_duration)}")
    if summary.performance.over_time:
        steps = ", ".join(step.value for step in summary.performance.over_time)
        typer.echo(f"Over budget: {steps}")
    if summary.error:
        typer.echo(
            f"Retries: {summary.retry_count}/{summary.max_retries}"
            + (" (retry available)" if summary.can_retry else "")
        )


@workflow_app.command("run")
def workflow_run(
    repository_url: str,
    owner: str = typer.Option(..., help="Repository owner"),
    name: str = typer.Option(..., help="Repository name"),
    mode: Mode = typer.Option(Mode.HACKATHON, help="Execution mode"),
    credentials: str = typer.Option(
        ..., envvar="SHIPYARD_CREDENTIALS", help="Credential handle passed to step units"
    ),
    branch: str = typer.Option("main", help="Default branch of the repository"),
    units: str = typer.Option(..., help=UNITS_HELP),
) -> None:
    """
    Create a session for a repository and run its workflow to the approval gate.

    Answering the gate later with `shipyard gate respond` needs a persistent
    store (SHIPYARD_STORE_URL=sqlite://... or redis://...). Without one the
    state lives in memory and is gone when this command exits.

    Example:
        shipyard workflow run https://github.com/acme/app --owner acme --name app \\
            --mode placement --units myproject.units:build_units
        # Output: Workflow wf_...: waiting_approval
        #         Waiting on gate: gate_...
    """
    orchestrator = _orchestrator(units)
    repository = RepositoryMetadata(
        owner=owner,
        name=name,
        full_name=f"{owner}/{name}",
        default_branch=branch,
        url=repository_url,
    )

    async def _launch() -> WorkflowRecord:
        session = await orchestrator.sessions.create_session(repository_url, credentials, repository)
        return await orchestrator.launch(session.id, mode)

    _echo_workflow(_run(_launch()))
    if load_config().store.url is None:
        typer.secho(
            "No SHIPYARD_STORE_URL set: workflow state was kept in memory and is lost "
            "now. Use a sqlite:// or redis:// store to respond to the gate later.",
            fg=typer.colors.YELLOW,
        )


@workflow_app.command("retry")
def workflow_retry(
    workflow_id: str,
    units: str = typer.Option(..., help=UNITS_HELP),
) -> None:
    """Retry a failed workflow from the step that failed."""
    orchestrator = _orchestrator(units)
    _echo_workflow(_run(orchestrator.retry(workflow_id)))


@gate_app.command("show")
def gate_show(gate_id: str) -> None:
    """Show an approval gate and the artifacts under review."""
    store = get_store()
    gate = asyncio.run(store.get(RecordKind.APPROVAL_GATE, gate_id))
    if gate is None:
        typer.echo("Gate not found")
        raise typer.Exit(code=1)
    typer.echo(f"Gate {gate.id} ({gate.type.value}, {gate.step.value}): {gate.status.value}")
    typer.echo(f"Workflow: {gate.workflow_id}")
    if gate.feedback:
        typer.echo(f"Feedback: {gate.feedback}")
    for artifact in gate.artifacts:
        typer.echo(f"- {_describe(artifact)}")


def _describe(artifact: Any) -> str:
    if isinstance(artifact, dict):
        return str(artifact.get("type") or artifact.get("name") or artifact)
    return str(artifact)


@gate_app.command("respond")
def gate_respond(
    gate_id: str,
    approve: bool = typer.Option(..., "--approve/--reject", help="Approve or reject the gate"),
    feedback: Optional[str] = typer.Option(None, help="Reviewer feedback"),
    units: str = typer.Option(..., help=UNITS_HELP),
) -> None:
    """Approve or reject a pending gate and resume its workflow."""
    orchestrator = _orchestrator(units)
    response = _run(orchestrator.respond(gate_id, approve, feedback))
    typer.echo(f"Gate {response.gate.id}: {response.gate.status.value}")
    _echo_workflow(response.workflow)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
