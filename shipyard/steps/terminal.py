"""Terminal step: package the approved changes as a pull request.

The GitHub client itself lives behind :class:`PullRequestPublisher`; this
module only decides what goes into the pull request.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from ..contracts import Mode, StepContext, StepResult, StepStatus, StepType
from ..utils.retry import RetryPolicy, retry_with_backoff
from .base import success_result

logger = logging.getLogger(__name__)

PR_TITLES = {
    Mode.HACKATHON: "Hackathon-Ready Improvements",
    Mode.PLACEMENT: "Professional Documentation & Enhancements",
    Mode.REFACTOR: "Code Quality Improvements",
}

# Docs artifact type -> file written on the branch.
DOC_FILES = {
    "readme": "README.md",
    "api-docs": "API_DOCS.md",
}


class PullRequestDraft(BaseModel):
    """Everything the publisher needs to open the pull request."""

    owner: str
    repo: str
    base_branch: str
    branch: str
    title: str
    body: str
    checklist: List[str] = Field(default_factory=list)
    files: Dict[str, str] = Field(default_factory=dict)


class PublishedPullRequest(BaseModel):
    url: Optional[str] = None
    number: Optional[int] = None
    checks_status: str = "pending"


class PullRequestPublisher(Protocol):
    """Creates the branch, commits ``draft.files`` and opens the PR."""

    async def publish(
        self, draft: PullRequestDraft, credentials: Optional[str]
    ) -> PublishedPullRequest:
        ...


class DryRunPublisher:
    """Publisher that records drafts instead of calling any API."""

    def __init__(self) -> None:
        self.drafts: List[PullRequestDraft] = []

    async def publish(
        self, draft: PullRequestDraft, credentials: Optional[str]
    ) -> PublishedPullRequest:
        self.drafts.append(draft)
        return PublishedPullRequest()


def _field(artifact: Any, name: str, default: Any = None) -> Any:
    if isinstance(artifact, dict):
        return artifact.get(name, default)
    return getattr(artifact, name, default)


def _completed(context: StepContext, step: StepType) -> Optional[StepResult]:
    result = context.previous(step)
    if result is not None and result.succeeded:
        return result
    return None


def demo_url(context: StepContext) -> Optional[str]:
    """URL of the deployed demo, if the demo step produced one."""
    result = _completed(context, StepType.DEMO)
    if not result or not result.artifacts:
        return None
    metadata = _field(result.artifacts[0], "metadata", {}) or {}
    return metadata.get("url")


def build_title(mode: Mode) -> str:
    return PR_TITLES.get(mode, "Repository Improvements")


def build_body(context: StepContext) -> str:
    lines = [
        "## Automated Improvements",
        "",
        f"This PR contains improvements generated in **{context.mode.value}** mode.",
        "",
        "### Changes Included",
        "",
    ]

    docs = _completed(context, StepType.DOCS)
    if docs:
        lines.append("#### Documentation")
        lines.append("- Improved README.md with comprehensive project information")
        lines.append("- Added installation and usage instructions")
        if any(_field(a, "type") == "api-docs" for a in docs.artifacts or []):
            lines.append("- Generated API documentation")
        lines.append("")

    url = demo_url(context)
    if url:
        lines.append("#### Live Demo")
        lines.append(f"- Deployed to: [{url}]({url})")
        lines.append("")

    if _completed(context, StepType.PITCH):
        lines.append("#### Pitch Materials")
        lines.append("- Architecture diagram generated")
        lines.append("- Presentation slide deck created")
        lines.append("- Pitch script with talking points")
        lines.append("")

    skipped = [
        step.value
        for step, result in context.prior_results.items()
        if result is not None and result.status == StepStatus.SKIPPED
    ]
    if skipped:
        lines.append(f"_Skipped steps: {', '.join(skipped)}_")
        lines.append("")

    lines.append("### Review Notes")
    lines.append("")
    lines.append(
        "Please review the changes and approve if they meet your requirements. "
        "You can request modifications or merge as-is."
    )
    return "\n".join(lines)


def build_checklist(context: StepContext) -> List[str]:
    checklist = [
        "- [x] Documentation updated",
        "- [x] Changes reviewed by automated steps",
    ]
    if demo_url(context):
        checklist.append("- [x] Live demo deployed and accessible")
    checklist.append("- [ ] Manual review completed")
    checklist.append("- [ ] Ready to merge")
    return checklist


def collect_files(context: StepContext) -> Dict[str, str]:
    """Files to commit, taken from the docs step's artifacts."""
    files: Dict[str, str] = {}
    docs = _completed(context, StepType.DOCS)
    for artifact in (docs.artifacts or []) if docs else []:
        path = DOC_FILES.get(_field(artifact, "type"))
        if path:
            files[path] = _field(artifact, "content", "")
    return files


class PullRequestStep:
    """Terminal step opening a pull request with the generated changes.

    Publishing is retried with backoff; if it still fails the exception
    propagates and the step fails as a whole.
    """

    step = StepType.TERMINAL

    def __init__(
        self,
        publisher: PullRequestPublisher,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.publisher = publisher
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3, initial_delay=1.0, max_delay=5.0
        )
        self._clock = clock

    def draft(self, context: StepContext) -> PullRequestDraft:
        repo = context.repository
        branch = f"shipyard-{context.mode.value}-{int(self._clock())}"
        return PullRequestDraft(
            owner=repo.owner,
            repo=repo.name,
            base_branch=repo.default_branch,
            branch=branch,
            title=build_title(context.mode),
            body=build_body(context),
            checklist=build_checklist(context),
            files=collect_files(context),
        )

    async def execute(self, context: StepContext) -> StepResult:
        draft = self.draft(context)
        logger.info(
            f"Publishing pull request {draft.branch} for {draft.owner}/{draft.repo} "
            f"({len(draft.files)} files)"
        )
        published = await retry_with_backoff(
            lambda: self.publisher.publish(draft, context.credentials),
            self.retry_policy,
        )
        artifact = {
            "id": f"pr_{draft.branch}",
            "type": "pull-request",
            "title": draft.title,
            "content": (
                f"Pull request created: {published.url}"
                if published.url
                else f"Pull request prepared on branch {draft.branch}"
            ),
            "metadata": {
                "branch": draft.branch,
                "summary": draft.body,
                "url": published.url,
                "number": published.number,
                "checklist": draft.checklist,
                "checks_status": published.checks_status,
                "files": sorted(draft.files),
            },
            "created_at": self._clock(),
        }
        return success_result(self.step, [artifact], metadata={"branch": draft.branch})
