"""Core record types for shipyard workflows."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class StepType(str, Enum):
    ANALYZE = "analyze"
    DOCS = "docs"
    DEMO = "demo"
    PITCH = "pitch"
    TERMINAL = "terminal"


STEP_SEQUENCE: List[StepType] = [
    StepType.ANALYZE,
    StepType.DOCS,
    StepType.DEMO,
    StepType.PITCH,
    StepType.TERMINAL,
]

# Steps that run before the approval boundary.
PRE_APPROVAL_STEPS: List[StepType] = STEP_SEQUENCE[:-1]


class Mode(str, Enum):
    HACKATHON = "hackathon"
    PLACEMENT = "placement"
    REFACTOR = "refactor"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING_APPROVAL = "waiting_approval"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class GateType(str, Enum):
    CONTENT = "content"
    TERMINAL = "terminal"


class GateStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def generate_id(prefix: str = "") -> str:
    """Return a short unique identifier with an optional prefix."""
    return f"{prefix}{uuid.uuid4().hex[:16]}"


class StoredRecord(BaseModel):
    """Base for anything written to the state store."""

    id: str
    version: int = 0


class RepositoryMetadata(BaseModel):
    """Description of the source repository a session points at."""

    owner: str
    name: str
    full_name: Optional[str] = None
    default_branch: str = "main"
    private: bool = False
    description: Optional[str] = None
    language: Optional[str] = None
    stars: int = 0
    forks: int = 0
    url: Optional[str] = None


class StepResult(BaseModel):
    """Outcome of one step invocation."""

    step: StepType
    status: StepStatus
    artifacts: Optional[List[Any]] = None
    error: Optional[str] = None
    duration: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.COMPLETED


class WorkflowError(BaseModel):
    """Terminal error recorded on a failed workflow."""

    step: Optional[StepType] = None
    message: str
    details: str = ""
    timestamp: float = Field(default_factory=time.time)
    recoverable: bool = True


def _empty_slots() -> Dict[StepType, Optional[StepResult]]:
    return {step: None for step in STEP_SEQUENCE}


class WorkflowRecord(StoredRecord):
    """Persisted state of one pipeline execution."""

    session_id: str
    mode: Mode
    results: Dict[StepType, Optional[StepResult]] = Field(default_factory=_empty_slots)
    current_step: Optional[StepType] = None
    status: WorkflowStatus = WorkflowStatus.PENDING
    error: Optional[WorkflowError] = None
    artifacts: List[Any] = Field(default_factory=list)
    gate_id: Optional[str] = None
    approved_reviews: List[StepType] = Field(default_factory=list)
    started_at: float = Field(default_factory=time.time)
    completed_at: Optional[float] = None
    timestamps: Dict[str, float] = Field(default_factory=dict)

    def result_for(self, step: StepType) -> Optional[StepResult]:
        return self.results.get(step)

    def executed_steps(self) -> List[StepType]:
        """Steps with a populated slot, in sequence order."""
        return [step for step in STEP_SEQUENCE if self.result_for(step) is not None]

    def clear_from(self, step: StepType) -> None:
        """Unset ``step``'s slot and every slot after it."""
        index = STEP_SEQUENCE.index(step)
        for later in STEP_SEQUENCE[index:]:
            self.results[later] = None

    def stamp(self, event: str, at: Optional[float] = None) -> None:
        self.timestamps[event] = at if at is not None else time.time()


class ApprovalGate(StoredRecord):
    """A suspension point waiting for a human decision."""

    workflow_id: str
    type: GateType
    step: StepType
    status: GateStatus = GateStatus.PENDING
    artifacts: List[Any] = Field(default_factory=list)
    feedback: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    responded_at: Optional[float] = None


class SessionRecord(StoredRecord):
    """A user's connection to a repository."""

    repository_url: str
    repository: Optional[RepositoryMetadata] = None
    credentials: Optional[str] = Field(default=None, repr=False)
    mode: Optional[Mode] = None
    workflow_id: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    expires_at: float = 0.0


class ErrorLogEntry(StoredRecord):
    """A logged workflow or system error."""

    workflow_id: str
    step: Optional[StepType] = None
    message: str
    details: str = ""
    timestamp: float = Field(default_factory=time.time)
    recoverable: bool = False


class StepContext(BaseModel):
    """Everything a step unit may read while executing."""

    workflow_id: str
    session_id: str
    mode: Mode
    repository: RepositoryMetadata
    credentials: Optional[str] = Field(default=None, repr=False)
    prior_results: Dict[StepType, Optional[StepResult]] = Field(
        default_factory=_empty_slots
    )
    deadline: Optional[float] = None
    feedback: Optional[str] = None

    def previous(self, step: StepType) -> Optional[StepResult]:
        """Return the recorded result of an earlier step, if any."""
        return self.prior_results.get(step)


class EventType(str, Enum):
    PIPELINE_STARTED = "pipeline_started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    STEP_REGENERATING = "step_regenerating"
    APPROVAL_REQUIRED = "approval_required"
    APPROVAL_RECEIVED = "approval_received"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"
    TIMING_WARNING = "timing_warning"


class WorkflowEvent(BaseModel):
    """Progress notification pushed to observers."""

    type: EventType
    workflow_id: str
    step: Optional[StepType] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowEvent":
        return cls.model_validate_json(data)


class ApprovalResponse(BaseModel):
    """Acknowledgement returned from ``Orchestrator.respond``."""

    gate: ApprovalGate
    workflow: WorkflowRecord
