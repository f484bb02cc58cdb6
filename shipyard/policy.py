"""Mode policy: which steps are critical in which mode.

Each mode assigns a priority to the four content steps. A step whose
priority reaches ``CRITICAL_PRIORITY_THRESHOLD`` is critical: its failure
aborts the workflow. Below the threshold the step is optional and a failure
is recorded as skipped. ``analyze``, ``docs`` and ``terminal`` are critical
in every mode regardless of the table.
"""

from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel

from .constants import CRITICAL_PRIORITY_THRESHOLD
from .contracts import STEP_SEQUENCE, Mode, StepType
from .errors import InvalidModeError

ALWAYS_CRITICAL = frozenset({StepType.ANALYZE, StepType.DOCS, StepType.TERMINAL})


class PromptModifiers(BaseModel):
    emphasis: str
    tone: str
    focus: List[str]


class ModePolicy(BaseModel):
    """Priorities and content emphasis for one mode."""

    mode: Mode
    priorities: Dict[StepType, int]
    prompt: PromptModifiers
    display_name: str
    description: str


MODE_POLICIES: Dict[Mode, ModePolicy] = {
    Mode.HACKATHON: ModePolicy(
        mode=Mode.HACKATHON,
        priorities={
            StepType.ANALYZE: 1,
            StepType.DOCS: 2,
            StepType.DEMO: 3,
            StepType.PITCH: 3,
        },
        prompt=PromptModifiers(
            emphasis="innovation and demo appeal",
            tone="exciting and energetic",
            focus=[
                "Quick setup and deployment",
                "Visual appeal and user experience",
                "Innovative features and uniqueness",
                "Demo-ready presentation",
            ],
        ),
        display_name="Hackathon",
        description="Optimize for hackathon presentations with focus on demo and pitch materials",
    ),
    Mode.PLACEMENT: ModePolicy(
        mode=Mode.PLACEMENT,
        priorities={
            StepType.ANALYZE: 2,
            StepType.DOCS: 3,
            StepType.DEMO: 2,
            StepType.PITCH: 1,
        },
        prompt=PromptModifiers(
            emphasis="technical depth and best practices",
            tone="professional and detailed",
            focus=[
                "Comprehensive documentation",
                "Code quality and architecture",
                "Testing and reliability",
                "Professional presentation",
            ],
        ),
        display_name="Placement",
        description=(
            "Optimize for job placements with comprehensive documentation "
            "and professional presentation"
        ),
    ),
    Mode.REFACTOR: ModePolicy(
        mode=Mode.REFACTOR,
        priorities={
            StepType.ANALYZE: 3,
            StepType.DOCS: 2,
            StepType.DEMO: 1,
            StepType.PITCH: 1,
        },
        prompt=PromptModifiers(
            emphasis="code improvements and maintainability",
            tone="technical and constructive",
            focus=[
                "Code structure and organization",
                "Performance optimizations",
                "Best practices and patterns",
                "Technical debt reduction",
            ],
        ),
        display_name="Refactor",
        description="Optimize for code improvements with focus on analysis and maintainability",
    ),
}


def is_valid_mode(mode: str) -> bool:
    return mode in {m.value for m in Mode}


def parse_mode(mode: Mode | str) -> Mode:
    """Return ``mode`` as a :class:`Mode`, raising ``InvalidModeError``."""
    if isinstance(mode, Mode):
        return mode
    normalised = str(mode).strip().lower()
    if not is_valid_mode(normalised):
        valid = ", ".join(m.value for m in Mode)
        raise InvalidModeError(f"Unknown mode {mode!r}; expected one of {valid}")
    return Mode(normalised)


def get_mode_policy(mode: Mode | str) -> ModePolicy:
    return MODE_POLICIES[parse_mode(mode)]


def get_priority(mode: Mode | str, step: StepType) -> int:
    """Priority of ``step`` in ``mode``. Unlisted steps have priority 0."""
    return get_mode_policy(mode).priorities.get(step, 0)


def is_critical(mode: Mode | str, step: StepType) -> bool:
    if step in ALWAYS_CRITICAL:
        return True
    return get_priority(mode, step) >= CRITICAL_PRIORITY_THRESHOLD


def is_optional(mode: Mode | str, step: StepType) -> bool:
    return not is_critical(mode, step)


def should_fail_fast(mode: Mode | str, step: StepType) -> bool:
    """Alias of :func:`is_critical` phrased for the failure path."""
    return is_critical(mode, step)


def critical_steps(mode: Mode | str) -> List[StepType]:
    return [step for step in STEP_SEQUENCE if is_critical(mode, step)]


def get_prompt_modifier(mode: Mode | str) -> str:
    """Format the mode's content emphasis for appending to generator prompts."""
    policy = get_mode_policy(mode)
    focus = "\n".join(
        f"{idx}. {point}" for idx, point in enumerate(policy.prompt.focus, start=1)
    )
    return (
        f"Mode: {policy.mode.value.upper()}\n"
        f"Emphasis: {policy.prompt.emphasis}\n"
        f"Tone: {policy.prompt.tone}\n"
        "\n"
        "Focus Areas:\n"
        f"{focus}\n"
    )


def get_mode_description(mode: Mode | str) -> str:
    return get_mode_policy(mode).description


def get_mode_display_name(mode: Mode | str) -> str:
    return get_mode_policy(mode).display_name
