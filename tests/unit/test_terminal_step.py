import pytest

from shipyard.contracts import Mode, StepContext, StepStatus, StepType
from shipyard.steps import DryRunPublisher, PublishedPullRequest, PullRequestStep
from shipyard.steps.base import failure_result, success_result
from shipyard.steps.terminal import PR_TITLES, build_checklist, collect_files
from shipyard.utils.retry import RetryPolicy
from tests.fixtures.units import ARTIFACTS, REPOSITORY


def _context(mode=Mode.PLACEMENT, demo=True, pitch_skipped=False):
    prior = {step: None for step in StepType}
    prior[StepType.ANALYZE] = success_result(StepType.ANALYZE, ARTIFACTS[StepType.ANALYZE])
    prior[StepType.DOCS] = success_result(
        StepType.DOCS,
        ARTIFACTS[StepType.DOCS] + [{"type": "api-docs", "content": "## API"}],
    )
    if demo:
        prior[StepType.DEMO] = success_result(StepType.DEMO, ARTIFACTS[StepType.DEMO])
    if pitch_skipped:
        skipped = failure_result(StepType.PITCH, "pitch exploded")
        prior[StepType.PITCH] = skipped.model_copy(update={"status": StepStatus.SKIPPED})
    return StepContext(
        workflow_id="wf_1",
        session_id="sess_1",
        mode=mode,
        repository=REPOSITORY,
        credentials="token-123",
        prior_results=prior,
    )


@pytest.mark.asyncio
async def test_pull_request_step_drafts_from_prior_results():
    publisher = DryRunPublisher()
    unit = PullRequestStep(publisher, clock=lambda: 1700000000.0)

    result = await unit.execute(_context())

    assert result.status == StepStatus.COMPLETED
    [artifact] = result.artifacts
    assert artifact["type"] == "pull-request"
    assert artifact["metadata"]["branch"] == "shipyard-placement-1700000000"
    assert artifact["metadata"]["files"] == ["API_DOCS.md", "README.md"]

    [draft] = publisher.drafts
    assert draft.owner == "acme" and draft.repo == "rocket"
    assert draft.base_branch == "main"
    assert draft.title == PR_TITLES[Mode.PLACEMENT]
    assert "https://rocket.example.app" in draft.body
    assert "Generated API documentation" in draft.body
    assert draft.files["README.md"].startswith("# Rocket")


@pytest.mark.asyncio
async def test_pull_request_body_lists_skipped_steps():
    unit = PullRequestStep(DryRunPublisher())
    draft = unit.draft(_context(demo=False, pitch_skipped=True))
    assert "Live Demo" not in draft.body
    assert "_Skipped steps: pitch_" in draft.body
    assert "- [x] Live demo deployed and accessible" not in draft.checklist


def test_checklist_and_files_follow_docs_and_demo():
    context = _context()
    assert "- [x] Live demo deployed and accessible" in build_checklist(context)
    assert build_checklist(context)[-1] == "- [ ] Ready to merge"
    assert set(collect_files(context)) == {"README.md", "API_DOCS.md"}


class FlakyPublisher:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    async def publish(self, draft, credentials):
        self.calls += 1
        assert credentials == "token-123"
        if self.calls <= self.failures:
            raise ConnectionError("github unavailable")
        return PublishedPullRequest(
            url="https://github.com/acme/rocket/pull/7", number=7, checks_status="success"
        )


@pytest.mark.asyncio
async def test_publish_is_retried_with_backoff():
    publisher = FlakyPublisher(failures=2)
    unit = PullRequestStep(publisher, RetryPolicy(max_attempts=3, initial_delay=0.0))

    result = await unit.execute(_context(mode=Mode.HACKATHON))

    assert publisher.calls == 3
    metadata = result.artifacts[0]["metadata"]
    assert metadata["url"] == "https://github.com/acme/rocket/pull/7"
    assert metadata["number"] == 7
    assert result.artifacts[0]["title"] == PR_TITLES[Mode.HACKATHON]


@pytest.mark.asyncio
async def test_publish_failure_propagates_after_last_attempt():
    publisher = FlakyPublisher(failures=5)
    unit = PullRequestStep(publisher, RetryPolicy(max_attempts=2, initial_delay=0.0))
    with pytest.raises(ConnectionError):
        await unit.execute(_context())
    assert publisher.calls == 2
