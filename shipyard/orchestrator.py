"""Sequential workflow orchestrator.

Runs ``analyze -> docs -> demo -> pitch`` for a session, suspends at an
approval gate, and on approval runs the ``terminal`` step. Every transition
is written to the state store before the next one starts and announced on
the event channel.

State machine::

    pending -> running(step_i) ... -> waiting_approval -> completed | failed
                     ^                       |
                     +-- content rejected ---+

``completed`` and ``failed`` are absorbing; the only way out of ``failed``
is an explicit :meth:`Orchestrator.retry`, bounded per step.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from .channels import BaseChannel, get_channel
from .config import ShipyardConfig, load_config
from .constants import MAX_STEP_RETRIES
from .contracts import (
    PRE_APPROVAL_STEPS,
    STEP_SEQUENCE,
    ApprovalGate,
    ApprovalResponse,
    EventType,
    GateStatus,
    GateType,
    Mode,
    SessionRecord,
    StepContext,
    StepResult,
    StepStatus,
    StepType,
    WorkflowError,
    WorkflowEvent,
    WorkflowRecord,
    WorkflowStatus,
    generate_id,
)
from .degradation import CompletionStatus, create_skipped_warning, get_completion_status
from .error_log import log_step_error, log_system_error
from .errors import (
    ConcurrentUpdateError,
    CriticalStepFailure,
    GateAlreadyResolved,
    GateExpired,
    GateNotFound,
    InvalidModeError,
    OptionalStepFailure,
    OutputValidationError,
    PersistenceError,
    RecordNotFound,
    RetryNotAllowed,
    SessionIncomplete,
    StepExecutionError,
    StoreUnavailable,
    WorkflowStateError,
)
from .persistence import get_store
from .persistence.store import RecordKind, StateStore
from .policy import is_critical, parse_mode
from .sessions import SessionManager
from .steps.base import StepUnit, execute_with_timeout, failure_result, validate_step_result
from .timing import (
    PerformanceSummary,
    create_pipeline_timing_warning,
    create_timing_warning,
    get_performance_summary,
    timing_from_workflow,
)
from .utils.retry import RetryPolicy, get_retry_count, retry_denial_reason, retry_with_backoff

logger = logging.getLogger(__name__)

REJECTED_BY_REVIEWER = "Rejected by reviewer"


class WorkflowSummary(BaseModel):
    """User-facing view of a workflow's outcome."""

    workflow_id: str
    status: WorkflowStatus
    completion: CompletionStatus
    warning: Optional[str] = None
    error: Optional[WorkflowError] = None
    performance: PerformanceSummary
    can_retry: bool = False
    retry_count: int = 0
    max_retries: int = MAX_STEP_RETRIES


def compile_artifacts(workflow: WorkflowRecord) -> List[Any]:
    """Artifacts from every populated slot, in sequence order."""
    artifacts: List[Any] = []
    for step in STEP_SEQUENCE:
        result = workflow.result_for(step)
        if result is not None and result.artifacts:
            artifacts.extend(result.artifacts)
    return artifacts


def build_summary(workflow: WorkflowRecord, config: ShipyardConfig) -> WorkflowSummary:
    failed_step = workflow.error.step if workflow.error else None
    return WorkflowSummary(
        workflow_id=workflow.id,
        status=workflow.status,
        completion=get_completion_status(workflow),
        warning=create_skipped_warning(workflow),
        error=workflow.error,
        performance=get_performance_summary(
            timing_from_workflow(workflow), config.timeouts.steps, config.timeouts.pipeline
        ),
        can_retry=retry_denial_reason(workflow) is None,
        retry_count=get_retry_count(workflow, failed_step) if failed_step else 0,
    )


class Orchestrator:
    """Drive workflows through the fixed step sequence."""

    def __init__(
        self,
        units: Union[Mapping[StepType, StepUnit], Iterable[StepUnit]],
        store: Optional[StateStore] = None,
        channel: Optional[BaseChannel] = None,
        config: Optional[ShipyardConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or load_config()
        if isinstance(units, Mapping):
            self.units: Dict[StepType, StepUnit] = {StepType(k): v for k, v in units.items()}
        else:
            self.units = {unit.step: unit for unit in units}
        missing = [step.value for step in STEP_SEQUENCE if step not in self.units]
        if missing:
            raise ValueError(f"No step unit registered for: {', '.join(missing)}")

        self.store = store or get_store(config=self.config)
        self.channel = channel or get_channel(config=self.config)
        self.sessions = SessionManager(self.store, ttl=self.config.ttl.session, clock=clock)
        self._clock = clock
        self._persist_policy = RetryPolicy(**self.config.retry.model_dump())
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Plumbing
    def _lock(self, workflow_id: str) -> asyncio.Lock:
        """Single writer per workflow id within this orchestrator."""
        lock = self._locks.get(workflow_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[workflow_id] = lock
        return lock

    async def _write(self, kind: RecordKind, record: Any, ttl: int, expected_version: Optional[int]) -> None:
        async def put() -> None:
            await self.store.put(kind, record, ttl=ttl, expected_version=expected_version)

        try:
            await retry_with_backoff(put, self._persist_policy, retry_on=(StoreUnavailable,))
        except PersistenceError as e:
            logger.error(f"Failed to persist {kind.value} {record.id}: {e}")
            raise

    async def _save(self, workflow: WorkflowRecord) -> None:
        await self._write(
            RecordKind.WORKFLOW, workflow, self.config.ttl.workflow, workflow.version
        )

    async def _emit(
        self,
        event_type: EventType,
        workflow: WorkflowRecord,
        step: Optional[StepType] = None,
        **data: Any,
    ) -> None:
        event = WorkflowEvent(
            type=event_type,
            workflow_id=workflow.id,
            step=step,
            data={"status": workflow.status.value, **data},
            timestamp=self._clock(),
        )
        try:
            await self.channel.emit(event)
        except Exception as e:
            logger.warning(f"Event {event_type.value} for {workflow.id} not delivered: {e}")

    async def _load(self, workflow_id: str) -> WorkflowRecord:
        workflow = await self.store.get(RecordKind.WORKFLOW, workflow_id)
        if workflow is None:
            raise RecordNotFound(RecordKind.WORKFLOW.value, workflow_id)
        return workflow

    async def _session_for(self, workflow: WorkflowRecord) -> SessionRecord:
        session = await self.sessions.require_session(workflow.session_id)
        if session.repository is None:
            raise SessionIncomplete(
                f"Session {session.id} has no repository metadata; connect a repository first"
            )
        if not session.credentials:
            raise SessionIncomplete(f"Session {session.id} has no credentials")
        return session

    def _context(
        self,
        workflow: WorkflowRecord,
        session: SessionRecord,
        feedback: Optional[str] = None,
    ) -> StepContext:
        return StepContext(
            workflow_id=workflow.id,
            session_id=session.id,
            mode=workflow.mode,
            repository=session.repository,
            credentials=session.credentials,
            prior_results={
                step: (result.model_copy() if result else None)
                for step, result in workflow.results.items()
            },
            feedback=feedback,
        )

    # ------------------------------------------------------------------
    # Public API
    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowRecord]:
        return await self.store.get(RecordKind.WORKFLOW, workflow_id)

    async def get_gate(self, gate_id: str) -> Optional[ApprovalGate]:
        return await self.store.get(RecordKind.APPROVAL_GATE, gate_id)

    async def start_workflow(
        self, session_id: str, mode: Optional[Mode | str] = None
    ) -> WorkflowRecord:
        """Create a pending workflow for ``session_id`` and link it to the session."""
        session = await self.sessions.require_session(session_id)
        selected = mode or session.mode
        if selected is None:
            raise InvalidModeError("Mode is required (hackathon, placement, or refactor)")
        selected = parse_mode(selected)
        if session.repository is None:
            raise SessionIncomplete("Repository metadata not found. Connect a repository first.")
        if not session.credentials:
            raise SessionIncomplete("Credentials not found. Authenticate first.")

        now = self._clock()
        workflow = WorkflowRecord(
            id=generate_id("wf_"),
            session_id=session_id,
            mode=selected,
            started_at=now,
        )
        workflow.stamp("initialized", now)
        await self._save(workflow)
        await self.sessions.update_session(
            session_id, {"mode": selected, "workflow_id": workflow.id}
        )
        logger.info(f"Workflow {workflow.id} created for session {session_id} in {selected.value} mode")
        await self._emit(EventType.PIPELINE_STARTED, workflow, mode=selected.value)
        return workflow

    async def launch(self, session_id: str, mode: Optional[Mode | str] = None) -> WorkflowRecord:
        """Start a workflow and run it up to the approval gate."""
        workflow = await self.start_workflow(session_id, mode)
        return await self.run(workflow.id)

    async def run(self, workflow_id: str) -> WorkflowRecord:
        """Execute outstanding steps until the approval gate or a critical failure.

        A workflow still waiting behind a gate that was already resolved, for
        instance because the store failed while the response was applied, is
        moved past that gate.
        """
        async with self._lock(workflow_id):
            workflow = await self._load(workflow_id)
            if workflow.status == WorkflowStatus.WAITING_APPROVAL:
                gate = await self.get_gate(workflow.gate_id) if workflow.gate_id else None
                if gate is None or gate.status == GateStatus.PENDING:
                    logger.debug(f"Workflow {workflow_id} is waiting on gate {workflow.gate_id}")
                    return workflow
                logger.info(f"Resuming workflow {workflow_id} past {gate.status.value} gate {gate.id}")
                session = await self._session_for(workflow)
                return await self._apply_decision(workflow, session, gate)
            if workflow.status.is_terminal:
                logger.debug(f"Workflow {workflow_id} is {workflow.status.value}; nothing to run")
                return workflow
            session = await self._session_for(workflow)
            return await self._run_steps(workflow, session)

    async def respond(
        self, gate_id: str, approved: bool, feedback: Optional[str] = None
    ) -> ApprovalResponse:
        """Resolve an approval gate and resume its workflow.

        The first response wins: responding to a gate that is no longer
        pending raises :class:`GateAlreadyResolved` and changes nothing.
        """
        gate = await self.get_gate(gate_id)
        if gate is None:
            raise GateNotFound(f"Approval gate {gate_id} not found or expired")

        async with self._lock(gate.workflow_id):
            gate = await self.get_gate(gate_id)
            if gate is None:
                raise GateNotFound(f"Approval gate {gate_id} not found or expired")
            if gate.status != GateStatus.PENDING:
                raise GateAlreadyResolved(gate_id, gate.status.value)

            workflow = await self._load(gate.workflow_id)
            if workflow.status != WorkflowStatus.WAITING_APPROVAL or workflow.gate_id != gate.id:
                raise WorkflowStateError(
                    f"Workflow {workflow.id} is not waiting on gate {gate_id}"
                )
            session = await self._session_for(workflow)

            gate.status = GateStatus.APPROVED if approved else GateStatus.REJECTED
            gate.feedback = feedback
            gate.responded_at = self._clock()
            try:
                await self._write(
                    RecordKind.APPROVAL_GATE,
                    gate,
                    self.config.ttl.approval_gate,
                    expected_version=gate.version,
                )
            except ConcurrentUpdateError:
                current = await self.get_gate(gate_id)
                status = current.status.value if current else "resolved"
                raise GateAlreadyResolved(gate_id, status) from None

            logger.info(f"Gate {gate_id} ({gate.type.value}) {gate.status.value} for {workflow.id}")
            workflow.stamp(f"{gate.type.value}_gate_{gate.status.value}", gate.responded_at)
            await self._emit(
                EventType.APPROVAL_RECEIVED,
                workflow,
                gate.step,
                gate_id=gate.id,
                gate_type=gate.type.value,
                approved=approved,
                feedback=feedback,
            )

            workflow = await self._apply_decision(workflow, session, gate)
            return ApprovalResponse(gate=gate, workflow=workflow)

    async def _apply_decision(
        self, workflow: WorkflowRecord, session: SessionRecord, gate: ApprovalGate
    ) -> WorkflowRecord:
        """Move ``workflow`` past a resolved ``gate``."""
        approved = gate.status == GateStatus.APPROVED
        if gate.type == GateType.TERMINAL:
            if approved:
                return await self._run_terminal(workflow, session)
            cause = REJECTED_BY_REVIEWER + (f": {gate.feedback}" if gate.feedback else "")
            await self._fail(workflow, StepType.TERMINAL, cause, recoverable=False)
        elif approved:
            if gate.step not in workflow.approved_reviews:
                workflow.approved_reviews.append(gate.step)
            await self._open_next_gate(workflow)
        else:
            await self._regenerate(workflow, session, gate.step, gate.feedback)
        return workflow

    async def retry(self, workflow_id: str) -> WorkflowRecord:
        """Resume a failed workflow from the step that failed."""
        async with self._lock(workflow_id):
            workflow = await self._load(workflow_id)
            reason = retry_denial_reason(workflow)
            if reason is not None:
                await log_system_error(self.store, workflow_id, "Retry request denied", reason)
                raise RetryNotAllowed(f"Cannot retry workflow: {reason}")
            session = await self._session_for(workflow)

            step = workflow.error.step
            attempt = get_retry_count(workflow, step) + 1
            now = self._clock()
            workflow.stamp(f"{step.value}_retry_{attempt}", now)
            workflow.stamp("retry_started", now)
            workflow.clear_from(step)
            workflow.error = None
            workflow.completed_at = None
            workflow.status = WorkflowStatus.RUNNING
            workflow.current_step = step
            await self._save(workflow)
            logger.info(f"Retrying workflow {workflow_id} from {step.value} (attempt {attempt})")

            if step == StepType.TERMINAL:
                return await self._run_terminal(workflow, session)
            return await self._run_steps(workflow, session)

    async def expire_gate(self, workflow_id: str) -> WorkflowRecord:
        """Fail a workflow whose approval gate expired without a response."""
        async with self._lock(workflow_id):
            workflow = await self._load(workflow_id)
            if workflow.status != WorkflowStatus.WAITING_APPROVAL:
                return workflow
            gate = await self.get_gate(workflow.gate_id) if workflow.gate_id else None
            if gate is not None:
                return workflow
            expired = GateExpired(f"Approval gate {workflow.gate_id} expired without a response")
            await self._fail(workflow, StepType.TERMINAL, str(expired), recoverable=False)
            return workflow

    async def summary(self, workflow_id: str) -> WorkflowSummary:
        return build_summary(await self._load(workflow_id), self.config)

    # ------------------------------------------------------------------
    # Transitions
    async def _run_steps(self, workflow: WorkflowRecord, session: SessionRecord) -> WorkflowRecord:
        for step in PRE_APPROVAL_STEPS:
            if workflow.result_for(step) is not None:
                continue
            if not await self._execute_step(workflow, session, step):
                return workflow
        await self._open_next_gate(workflow)
        return workflow

    async def _execute_step(
        self,
        workflow: WorkflowRecord,
        session: SessionRecord,
        step: StepType,
        feedback: Optional[str] = None,
    ) -> bool:
        """Run one step and record the outcome. Returns False if the workflow failed."""
        workflow.current_step = step
        workflow.status = WorkflowStatus.RUNNING
        workflow.stamp(f"{step.value}_started", self._clock())
        await self._save(workflow)
        await self._emit(EventType.STEP_STARTED, workflow, step)
        logger.info(f"Workflow {workflow.id}: running {step.value}")

        result, cause = await self._invoke(workflow, session, step, feedback)
        workflow.stamp(f"{step.value}_finished", self._clock())

        if cause is not None:
            return await self._handle_failure(workflow, step, result, cause)

        workflow.results[step] = result
        await self._save(workflow)
        await self._emit(
            EventType.STEP_COMPLETED,
            workflow,
            step,
            duration=result.duration,
            artifact_count=len(result.artifacts or []),
        )
        warning = create_timing_warning(step, result.duration, self.config.timeouts.steps)
        if warning:
            await self._emit(EventType.TIMING_WARNING, workflow, step, message=warning)
        return True

    async def _invoke(
        self,
        workflow: WorkflowRecord,
        session: SessionRecord,
        step: StepType,
        feedback: Optional[str],
    ) -> Tuple[Optional[StepResult], Optional[str]]:
        """Run the unit with timeout and validation.

        Returns the result and, when the step did not complete, the cause.
        An invalid result gets exactly one regenerate attempt.
        """
        unit = self.units[step]
        budget = self.config.timeouts.for_step(step)
        context = self._context(workflow, session, feedback)

        raw = await execute_with_timeout(unit, context, budget)
        result = validate_step_result(raw)
        if result is None:
            logger.warning(f"Step {step.value} produced invalid output; regenerating once")
            await self._emit(
                EventType.STEP_REGENERATING, workflow, step, reason="invalid output"
            )
            raw = await execute_with_timeout(unit, context, budget)
            result = validate_step_result(raw)
            if result is None:
                error = OutputValidationError(
                    step.value, f"Step {step.value} failed validation after retry"
                )
                return None, error.message

        if result.step != step:
            logger.warning(f"Unit for {step.value} reported step {result.step.value}")
            result = result.model_copy(update={"step": step})

        if not result.succeeded:
            error = StepExecutionError(
                step.value, result.error or f"Step {step.value} returned {result.status.value}"
            )
            return result, error.message
        return result, None

    async def _handle_failure(
        self,
        workflow: WorkflowRecord,
        step: StepType,
        result: Optional[StepResult],
        cause: str,
    ) -> bool:
        duration = result.duration if result else 0.0
        metadata = dict(result.metadata) if result else {}

        if is_critical(workflow.mode, step):
            failure = CriticalStepFailure(step.value, f"Critical step {step.value} failed: {cause}")
            logger.error(f"Workflow {workflow.id}: {failure.message}")
            await self._fail(
                workflow,
                step,
                failure.message,
                details=cause,
                result=failure_result(step, cause, metadata=metadata, duration=duration),
            )
            return False

        logger.warning(f"Workflow {workflow.id}: optional step {step.value} skipped: {cause}")
        workflow.results[step] = StepResult(
            step=step,
            status=StepStatus.SKIPPED,
            artifacts=[],
            error=cause,
            duration=duration,
            metadata={**metadata, "skipped": True, "reason": cause},
        )
        workflow.stamp(f"{step.value}_skipped", self._clock())
        await self._save(workflow)
        await log_step_error(
            self.store, workflow.id, step, OptionalStepFailure(step.value, cause), recoverable=True
        )
        await self._emit(EventType.STEP_SKIPPED, workflow, step, error=cause)
        return True

    async def _fail(
        self,
        workflow: WorkflowRecord,
        step: StepType,
        message: str,
        details: str = "",
        recoverable: bool = True,
        result: Optional[StepResult] = None,
    ) -> None:
        now = self._clock()
        workflow.results[step] = result or failure_result(step, message)
        workflow.status = WorkflowStatus.FAILED
        workflow.current_step = step
        workflow.gate_id = None
        workflow.error = WorkflowError(
            step=step,
            message=message,
            details=details or message,
            timestamp=now,
            recoverable=recoverable,
        )
        workflow.completed_at = now
        workflow.stamp("failed", now)
        await self._save(workflow)
        await log_step_error(self.store, workflow.id, step, message, recoverable=recoverable)
        await self._emit(
            EventType.PIPELINE_FAILED, workflow, step, error=message, failed_step=step.value
        )

    def _pending_review(self, workflow: WorkflowRecord) -> Optional[StepType]:
        """First configured review step whose completed output is not yet approved."""
        for step in self.config.review_steps:
            if step not in PRE_APPROVAL_STEPS or step in workflow.approved_reviews:
                continue
            result = workflow.result_for(step)
            if result is not None and result.succeeded:
                return step
        return None

    async def _open_next_gate(self, workflow: WorkflowRecord) -> ApprovalGate:
        """Suspend the workflow behind the next approval gate.

        Content review gates for configured ``review_steps`` come first; the
        terminal review gate covering every compiled artifact comes last.
        """
        now = self._clock()
        workflow.artifacts = compile_artifacts(workflow)

        review_step = self._pending_review(workflow)
        if review_step is not None:
            gate = ApprovalGate(
                id=generate_id("gate_"),
                workflow_id=workflow.id,
                type=GateType.CONTENT,
                step=review_step,
                artifacts=list(workflow.results[review_step].artifacts or []),
                created_at=now,
            )
        else:
            gate = ApprovalGate(
                id=generate_id("gate_"),
                workflow_id=workflow.id,
                type=GateType.TERMINAL,
                step=StepType.TERMINAL,
                artifacts=list(workflow.artifacts),
                created_at=now,
            )
        await self._write(
            RecordKind.APPROVAL_GATE, gate, self.config.ttl.approval_gate, expected_version=0
        )

        workflow.gate_id = gate.id
        workflow.current_step = gate.step
        workflow.status = WorkflowStatus.WAITING_APPROVAL
        workflow.stamp("approval_requested", now)
        await self._save(workflow)
        logger.info(f"Workflow {workflow.id} waiting on {gate.type.value} gate {gate.id}")

        elapsed = now - workflow.started_at
        pipeline_warning = create_pipeline_timing_warning(elapsed, self.config.timeouts.pipeline)
        if pipeline_warning:
            await self._emit(EventType.TIMING_WARNING, workflow, message=pipeline_warning)
        await self._emit(
            EventType.APPROVAL_REQUIRED,
            workflow,
            gate.step,
            gate_id=gate.id,
            gate_type=gate.type.value,
            artifact_count=len(gate.artifacts),
            warning=create_skipped_warning(workflow),
        )
        return gate

    async def _regenerate(
        self,
        workflow: WorkflowRecord,
        session: SessionRecord,
        step: StepType,
        feedback: Optional[str],
    ) -> None:
        """Clear ``step``'s slot and run it again with the reviewer's feedback."""
        workflow.results[step] = None
        workflow.gate_id = None
        workflow.status = WorkflowStatus.RUNNING
        workflow.current_step = step
        count = sum(1 for key in workflow.timestamps if key.startswith(f"{step.value}_regenerate"))
        workflow.stamp(f"{step.value}_regenerate_{count + 1}", self._clock())
        await self._save(workflow)
        await self._emit(
            EventType.STEP_REGENERATING,
            workflow,
            step,
            reason="rejected by reviewer",
            feedback=feedback,
        )
        if await self._execute_step(workflow, session, step, feedback=feedback):
            await self._open_next_gate(workflow)

    async def _run_terminal(self, workflow: WorkflowRecord, session: SessionRecord) -> WorkflowRecord:
        if not await self._execute_step(workflow, session, StepType.TERMINAL):
            return workflow

        now = self._clock()
        workflow.artifacts = compile_artifacts(workflow)
        workflow.status = WorkflowStatus.COMPLETED
        workflow.gate_id = None
        workflow.completed_at = now
        workflow.stamp("completed", now)
        await self._save(workflow)
        logger.info(f"Workflow {workflow.id} completed with {len(workflow.artifacts)} artifacts")
        await self._emit(
            EventType.PIPELINE_COMPLETED,
            workflow,
            StepType.TERMINAL,
            artifact_count=len(workflow.artifacts),
            warning=create_skipped_warning(workflow),
        )
        return workflow
