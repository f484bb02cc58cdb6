"""Scripted step units shared by the orchestrator and CLI tests."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from shipyard.config import RetryConfig, ShipyardConfig, TimeoutConfig
from shipyard.contracts import STEP_SEQUENCE, RepositoryMetadata, StepContext, StepType
from shipyard.steps import DryRunPublisher, PullRequestStep, failure_result, success_result
from shipyard.utils.retry import RetryPolicy

REPOSITORY = RepositoryMetadata(
    owner="acme",
    name="rocket",
    full_name="acme/rocket",
    language="Python",
    url="https://github.com/acme/rocket",
)

ARTIFACTS: Dict[StepType, List[Dict[str, Any]]] = {
    StepType.ANALYZE: [{"type": "analysis", "content": "Flask app with 3 routes"}],
    StepType.DOCS: [{"type": "readme", "content": "# Rocket\n\nLaunches things."}],
    StepType.DEMO: [
        {"type": "demo", "content": "deployed", "metadata": {"url": "https://rocket.example.app"}}
    ],
    StepType.PITCH: [{"type": "pitch-script", "content": "Rocket makes launching easy."}],
    StepType.TERMINAL: [{"type": "pull-request", "content": "Pull request prepared"}],
}


class ScriptedStep:
    """Step unit that plays back one behaviour per call.

    Behaviours: ``"ok"``, ``"fail"``, ``"raise"``, ``"hang"``, ``"invalid"``,
    ``"garbage"`` or an ``async def (context)`` callable. The last behaviour
    repeats once the script runs out.
    """

    def __init__(self, step: StepType | str, *behaviours: Any) -> None:
        self.step = StepType(step)
        self.behaviours = list(behaviours) or ["ok"]
        self.calls: List[StepContext] = []
        self.cancelled = False

    async def execute(self, context: StepContext):
        self.calls.append(context)
        index = min(len(self.calls), len(self.behaviours)) - 1
        behaviour = self.behaviours[index]

        if callable(behaviour):
            return await behaviour(context)
        if behaviour == "ok":
            artifacts = [dict(a, attempt=len(self.calls)) for a in ARTIFACTS[self.step]]
            return success_result(self.step, artifacts)
        if behaviour == "fail":
            return failure_result(self.step, f"{self.step.value} failed")
        if behaviour == "raise":
            raise RuntimeError(f"{self.step.value} exploded")
        if behaviour == "hang":
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if behaviour == "invalid":
            return {"step": self.step.value, "status": "completed", "artifacts": None}
        if behaviour == "garbage":
            return "not a step result"
        raise AssertionError(f"unknown behaviour {behaviour!r}")


def build_units(**behaviours: Any) -> Dict[StepType, Any]:
    """Units for every step; ``docs=("fail",)`` scripts a single step."""
    units: Dict[StepType, Any] = {}
    for step in STEP_SEQUENCE[:-1]:
        script = behaviours.get(step.value, ("ok",))
        units[step] = ScriptedStep(step, *script)
    terminal = behaviours.get("terminal")
    if terminal is None:
        units[StepType.TERMINAL] = PullRequestStep(
            DryRunPublisher(), RetryPolicy(max_attempts=1), clock=lambda: 1700000000.0
        )
    else:
        units[StepType.TERMINAL] = ScriptedStep(StepType.TERMINAL, *terminal)
    return units


def fast_config(**overrides: Any) -> ShipyardConfig:
    """Configuration with sub-second budgets and no persistence backoff."""
    timeouts = TimeoutConfig(
        steps={step.value: 0.5 for step in STEP_SEQUENCE}, pipeline=30.0
    )
    retry = RetryConfig(max_attempts=2, initial_delay=0.0, max_delay=0.0)
    values = {"timeouts": timeouts, "retry": retry}
    values.update(overrides)
    return ShipyardConfig(**values)
