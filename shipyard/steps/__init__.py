"""Step units and helpers for running them."""

from .base import (
    StepUnit,
    execute_with_timeout,
    failure_result,
    success_result,
    validate_step_result,
)
from .function import FunctionStep, step
from .terminal import (
    DryRunPublisher,
    PublishedPullRequest,
    PullRequestDraft,
    PullRequestPublisher,
    PullRequestStep,
)

__all__ = [
    "StepUnit",
    "execute_with_timeout",
    "failure_result",
    "success_result",
    "validate_step_result",
    "FunctionStep",
    "step",
    "DryRunPublisher",
    "PublishedPullRequest",
    "PullRequestDraft",
    "PullRequestPublisher",
    "PullRequestStep",
]
