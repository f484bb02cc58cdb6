"""Shipyard: sequential, approval-gated workflow orchestration for repository deliverables."""

from .channels import get_channel
from .contracts import (
    STEP_SEQUENCE,
    ApprovalGate,
    Mode,
    RepositoryMetadata,
    SessionRecord,
    StepContext,
    StepResult,
    StepStatus,
    StepType,
    WorkflowRecord,
    WorkflowStatus,
)
from .orchestrator import Orchestrator
from .persistence import get_store
from .sessions import SessionManager
from .steps import FunctionStep, PullRequestStep, StepUnit, execute_with_timeout

__version__ = "0.1.0"
__all__ = [
    "STEP_SEQUENCE",
    "ApprovalGate",
    "FunctionStep",
    "Mode",
    "Orchestrator",
    "PullRequestStep",
    "RepositoryMetadata",
    "SessionManager",
    "SessionRecord",
    "StepContext",
    "StepResult",
    "StepStatus",
    "StepType",
    "StepUnit",
    "WorkflowRecord",
    "WorkflowStatus",
    "execute_with_timeout",
    "get_channel",
    "get_store",
]
