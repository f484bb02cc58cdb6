"""Simple example running a workflow up to the approval gate and through it.

Also usable from the CLI. The gate is answered by a second command, so the
state has to live in a persistent store::

    export SHIPYARD_STORE_URL=sqlite://shipyard.db
    shipyard workflow run https://github.com/acme/rocket --owner acme --name rocket \
        --credentials token --units guides.basic_workflow:build_units
    shipyard gate respond <gate id> --approve --units guides.basic_workflow:build_units
"""

import asyncio

from shipyard import FunctionStep, Orchestrator, RepositoryMetadata, StepType
from shipyard.persistence import InMemoryStateStore
from shipyard.steps import DryRunPublisher, PullRequestStep, step


@step(StepType.ANALYZE)
async def analyze(context):
    return [{"type": "analysis", "content": f"{context.repository.full_name} is a Python app"}]


@step(StepType.DOCS)
async def docs(context):
    summary = context.previous(StepType.ANALYZE).artifacts[0]["content"]
    return [{"type": "readme", "content": f"# {context.repository.name}\n\n{summary}\n"}]


async def deploy_demo(context):
    raise ConnectionError("no deployment token configured")


@step(StepType.PITCH)
async def pitch(context):
    return [{"type": "pitch-script", "content": "Ship it."}]


def build_units():
    """Step units for every stage; the demo step always fails."""
    return [
        analyze,
        docs,
        FunctionStep(StepType.DEMO, deploy_demo),
        pitch,
        PullRequestStep(DryRunPublisher()),
    ]


async def main():
    """Run in placement mode, where the demo step is optional."""
    orchestrator = Orchestrator(build_units(), store=InMemoryStateStore())
    repository = RepositoryMetadata(owner="acme", name="rocket", full_name="acme/rocket")
    session = await orchestrator.sessions.create_session(
        "https://github.com/acme/rocket", "token", repository
    )

    workflow = await orchestrator.launch(session.id, "placement")
    print(f"Workflow {workflow.id}: {workflow.status.value}")
    for step_type, result in workflow.results.items():
        print(f"  {step_type.value}: {result.status.value if result else '-'}")

    response = await orchestrator.respond(workflow.gate_id, approved=True)
    pull_request = response.workflow.artifacts[-1]
    print(f"Workflow {workflow.id}: {response.workflow.status.value}")
    print(f"Branch: {pull_request['metadata']['branch']}")

    summary = await orchestrator.summary(workflow.id)
    if summary.warning:
        print(summary.warning)


if __name__ == "__main__":
    asyncio.run(main())
