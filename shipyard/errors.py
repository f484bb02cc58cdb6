"""Exception hierarchy for shipyard."""

from __future__ import annotations

from typing import Optional


class ShipyardError(Exception):
    """Base class for all shipyard errors."""


# ----------------------------------------------------------------------
# Step-level causes. These are normalised into failed StepResults by the
# orchestrator and never escape ``Orchestrator.run``.
class StepError(ShipyardError):
    """A step did not produce a usable result."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(message)
        self.step = step
        self.message = message


class StepTimeout(StepError):
    """A step exceeded its time budget."""

    def __init__(self, step: str, budget: float) -> None:
        super().__init__(step, f"Step {step} timed out after {budget:g}s")
        self.budget = budget


class StepExecutionError(StepError):
    """The step unit raised or returned a failure."""


class OutputValidationError(StepError):
    """The step unit returned a structurally invalid result."""


class CriticalStepFailure(StepError):
    """A critical step failed; the workflow is aborted."""


class OptionalStepFailure(StepError):
    """An optional step failed; it is recorded as skipped."""


# ----------------------------------------------------------------------
class GateError(ShipyardError):
    """Problems responding to an approval gate."""


class GateNotFound(GateError):
    pass


class GateExpired(GateError):
    """The gate's TTL elapsed before anyone responded."""


class GateAlreadyResolved(GateError):
    """The gate already received a response; the first response wins."""

    def __init__(self, gate_id: str, status: str) -> None:
        super().__init__(f"Approval gate {gate_id} was already {status}")
        self.gate_id = gate_id
        self.status = status


# ----------------------------------------------------------------------
class PersistenceError(ShipyardError):
    """A state store operation failed."""


class StoreUnavailable(PersistenceError):
    """The backend could not be reached. Retried by the orchestrator."""


class RecordNotFound(PersistenceError):
    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class ConcurrentUpdateError(PersistenceError):
    """A compare-and-swap write lost against another writer."""

    def __init__(
        self, kind: str, record_id: str, expected: Optional[int], actual: Optional[int]
    ) -> None:
        super().__init__(
            f"{kind} {record_id} was modified concurrently "
            f"(expected version {expected}, found {actual})"
        )
        self.kind = kind
        self.record_id = record_id
        self.expected = expected
        self.actual = actual


# ----------------------------------------------------------------------
class SessionError(ShipyardError):
    pass


class SessionNotFound(SessionError):
    pass


class SessionIncomplete(SessionError):
    """The session lacks repository metadata or credentials."""


class InvalidModeError(ShipyardError):
    pass


class WorkflowStateError(ShipyardError):
    """An operation was attempted in a state that does not allow it."""


class RetryNotAllowed(WorkflowStateError):
    pass
