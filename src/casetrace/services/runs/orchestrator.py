"""RunOrchestrator: drives a case through the six analysis steps.

Contract:
- Steps execute in strict ascending order, one at a time.
- A COMPLETED step is never executed again; it is tallied as skipped and
  emits no events.
- The first step failure halts the run: later steps are not touched and no
  report is written.
- The report is upserted only when all six steps end up completed.
- The case guard is released (completed or failed) on every exit path.
  Unexpected errors are re-raised as RunAbortedError carrying the steps
  handled so far; cancellation propagates unchanged.

No FastAPI globals. All dependencies are injected via the constructor; the
per-run inputs (including any fault plan) travel in RunContext.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum

from casetrace.models.case import Case, CaseStatus
from casetrace.models.case_event import EventType
from casetrace.models.case_step import (
    STEP_NAMES,
    TOTAL_STEPS,
    StepOutputError,
    StepPayload,
    StepStatus,
)
from casetrace.observability.tracing import start_span
from casetrace.persistence.repositories.case_events import CaseEventsRepo
from casetrace.persistence.repositories.case_steps import CaseStepsRepo
from casetrace.persistence.repositories.cases import CasesRepo
from casetrace.persistence.repositories.reports import ReportsRepo
from casetrace.services.generation.client import (
    GeneratedResult,
    GenerationClient,
    is_retryable_generation_error,
)
from casetrace.services.runs.backoff import (
    BackoffPolicy,
    OperationFailedError,
    execute_with_backoff,
)
from casetrace.services.runs.echo_guard import echo_warning, find_echoed_fields
from casetrace.services.runs.errors import (
    CaseNotFoundError,
    InvalidResumeError,
    NoDocumentsError,
    RunAbortedError,
    RunConflictError,
)
from casetrace.services.runs.faults import FaultPlan, InjectedFailureError
from casetrace.services.runs.guard import RunGuard
from casetrace.services.runs.ledger import StepLedger
from casetrace.services.runs.report import build_report

logger = logging.getLogger(__name__)

SKIP_REASON_ALREADY_COMPLETED = "already_completed"
SKIP_REASON_BEFORE_START = "before_start_step"


class StepOutcomeStatus(StrEnum):
    """Tag of a StepOutcome."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class StepErrorKind(StrEnum):
    """Why a step failed."""

    RATE_LIMITED_EXHAUSTED = "rate_limited_exhausted"
    FATAL = "fatal"
    INVALID_OUTPUT = "invalid_output"
    INJECTED = "injected"


@dataclass(frozen=True)
class StepOutcome:
    """Result of handling one step in a run.

    Attributes:
        step_number: 1..6.
        status: completed, skipped or failed.
        reason: Why a step was skipped.
        retry_count: Retries consumed (completed/failed only).
        tokens: Tokens reported for this execution.
        duration_ms: Wall-clock time of this execution.
        error: Failure message.
        error_kind: Failure classification.
        injected: True when the failure came from a FaultPlan.
    """

    step_number: int
    status: StepOutcomeStatus
    reason: str | None = None
    retry_count: int = 0
    tokens: int = 0
    duration_ms: int = 0
    error: str | None = None
    error_kind: StepErrorKind | None = None
    injected: bool = False


@dataclass
class RunOutcome:
    """Aggregate result of one run.

    Attributes:
        case_id: Case the run operated on.
        run_id: Identifier of the run.
        success: True if all six steps ended completed and the report was written.
        steps: Outcome per handled step, in step order.
        failed_at_step: Step that halted the run, if any.
        error: Failure message of that step.
        error_kind: Failure classification of that step.
        tokens_used: Tokens consumed by steps executed in this run.
        duration_ms: Generation time of steps executed in this run.
    """

    case_id: str
    run_id: str
    success: bool
    steps: list[StepOutcome] = field(default_factory=list)
    failed_at_step: int | None = None
    error: str | None = None
    error_kind: StepErrorKind | None = None
    tokens_used: int = 0
    duration_ms: int = 0

    def _count(self, status: StepOutcomeStatus) -> int:
        return sum(1 for s in self.steps if s.status == status)

    @property
    def steps_completed(self) -> int:
        return self._count(StepOutcomeStatus.COMPLETED)

    @property
    def steps_skipped(self) -> int:
        return self._count(StepOutcomeStatus.SKIPPED)

    @property
    def steps_failed(self) -> int:
        return self._count(StepOutcomeStatus.FAILED)


@dataclass
class RunContext:
    """Per-run inputs.

    Attributes:
        case_id: Case to run.
        run_id: Fresh identifier for this run.
        start_step: First step to execute (1 for a full run).
        faults: Optional fault plan for this run only.
    """

    case_id: str
    run_id: str
    start_step: int = 1
    faults: FaultPlan | None = None


class RunOrchestrator:
    """Six-step state machine with idempotent skip, resume, retry and guard.

    Args:
        cases_repo: Case store (documents and guard).
        steps_repo: Step store.
        events_repo: Event log.
        reports_repo: Report store.
        generation_client: External generation service adapter.
        backoff_policy: Retry budget for generation calls.
        sleep: Awaitable sleep used between retries; injectable for tests.
    """

    def __init__(
        self,
        *,
        cases_repo: CasesRepo,
        steps_repo: CaseStepsRepo,
        events_repo: CaseEventsRepo,
        reports_repo: ReportsRepo,
        generation_client: GenerationClient,
        backoff_policy: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._cases = cases_repo
        self._reports = reports_repo
        self._guard = RunGuard(cases_repo)
        self._ledger = StepLedger(steps_repo, events_repo)
        self._client = generation_client
        self._policy = backoff_policy or BackoffPolicy()
        self._sleep = sleep

    async def execute(self, ctx: RunContext) -> RunOutcome:
        """Run the case from ``ctx.start_step`` through step 6.

        Args:
            ctx: Per-run inputs.

        Returns:
            RunOutcome; ``success`` is False when a step failed and halted the run.

        Raises:
            CaseNotFoundError: No such case.
            NoDocumentsError: The case has no documents.
            InvalidResumeError: start_step out of range, or an earlier step
                is not completed.
            RunConflictError: Another run holds the case.
            RunAbortedError: An unexpected error ended the run after it
                started; carries the partial outcome.
        """
        case = self._check_preconditions(ctx)

        acquired = self._guard.try_acquire(ctx.case_id, ctx.run_id)
        if not acquired.case_exists:
            raise CaseNotFoundError(ctx.case_id)
        if not acquired.acquired:
            raise RunConflictError(ctx.case_id, acquired.current_run_id)

        outcome = RunOutcome(case_id=ctx.case_id, run_id=ctx.run_id, success=False)
        try:
            with start_span(
                "casetrace.run",
                {
                    "casetrace.case_id": ctx.case_id,
                    "casetrace.run_id": ctx.run_id,
                    "casetrace.start_step": ctx.start_step,
                },
            ):
                return await self._run_steps(ctx, case, outcome)
        except Exception as exc:
            logger.exception("Run %s on case %s aborted", ctx.run_id, ctx.case_id)
            self._guard.release(ctx.case_id, ctx.run_id, CaseStatus.FAILED)
            raise RunAbortedError(outcome, exc) from exc
        except BaseException:
            # Cancellation: the guard must not outlive the run.
            logger.warning("Run %s on case %s cancelled", ctx.run_id, ctx.case_id)
            self._guard.release(ctx.case_id, ctx.run_id, CaseStatus.FAILED)
            raise

    def _check_preconditions(self, ctx: RunContext) -> Case:
        case = self._cases.get_with_documents(ctx.case_id)
        if case is None:
            raise CaseNotFoundError(ctx.case_id)
        if not case.documents:
            raise NoDocumentsError(ctx.case_id)
        # Early answer only; acquiring the guard in execute() stays authoritative.
        if case.is_running and case.current_run_id is not None:
            raise RunConflictError(ctx.case_id, case.current_run_id)

        if not 1 <= ctx.start_step <= TOTAL_STEPS:
            raise InvalidResumeError(
                f"Start step must be between 1 and {TOTAL_STEPS}, got {ctx.start_step}"
            )
        if ctx.start_step > 1:
            completed = {
                s.step_number
                for s in self._ledger.list_steps(ctx.case_id)
                if s.status == StepStatus.COMPLETED
            }
            missing = [n for n in range(1, ctx.start_step) if n not in completed]
            if missing:
                raise InvalidResumeError(
                    f"Cannot resume from step {ctx.start_step}: "
                    f"step(s) {', '.join(map(str, missing))} not completed"
                )
        return case

    async def _run_steps(self, ctx: RunContext, case: Case, outcome: RunOutcome) -> RunOutcome:
        outcome.steps.extend(
            StepOutcome(n, StepOutcomeStatus.SKIPPED, reason=SKIP_REASON_BEFORE_START)
            for n in range(1, ctx.start_step)
        )
        source_text = "\n\n".join(doc.content for doc in case.documents)

        for step_number in range(ctx.start_step, TOTAL_STEPS + 1):
            with start_span(
                "casetrace.step",
                {
                    "casetrace.case_id": ctx.case_id,
                    "casetrace.run_id": ctx.run_id,
                    "casetrace.step_number": step_number,
                },
            ):
                step_outcome = await self._execute_step(ctx, step_number, source_text)
            outcome.steps.append(step_outcome)

            if step_outcome.status == StepOutcomeStatus.FAILED:
                outcome.failed_at_step = step_number
                outcome.error = step_outcome.error
                outcome.error_kind = step_outcome.error_kind
                self._guard.release(ctx.case_id, ctx.run_id, CaseStatus.FAILED)
                logger.warning(
                    "Run %s halted at step %d on case %s: %s",
                    ctx.run_id,
                    step_number,
                    ctx.case_id,
                    step_outcome.error,
                )
                return outcome

            if step_outcome.status == StepOutcomeStatus.COMPLETED:
                outcome.tokens_used += step_outcome.tokens
                outcome.duration_ms += step_outcome.duration_ms

        executed = {
            s.step_number for s in outcome.steps if s.status == StepOutcomeStatus.COMPLETED
        }
        report = build_report(
            case,
            self._ledger.list_steps(ctx.case_id),
            executed_steps=executed,
            tokens_used=outcome.tokens_used,
            duration_ms=outcome.duration_ms,
        )
        self._reports.upsert(report)
        self._guard.release(ctx.case_id, ctx.run_id, CaseStatus.COMPLETED)

        outcome.success = True
        logger.info(
            "Run %s completed case %s: %d completed, %d skipped",
            ctx.run_id,
            ctx.case_id,
            outcome.steps_completed,
            outcome.steps_skipped,
        )
        return outcome

    async def _execute_step(
        self, ctx: RunContext, step_number: int, source_text: str
    ) -> StepOutcome:
        step, created = self._ledger.get_or_create_step(ctx.case_id, step_number)
        if step.status == StepStatus.COMPLETED:
            logger.info("Skipping completed step %d of case %s", step_number, ctx.case_id)
            return StepOutcome(
                step_number, StepOutcomeStatus.SKIPPED, reason=SKIP_REASON_ALREADY_COMPLETED
            )

        step = self._ledger.mark_processing(step)
        self._ledger.append_event(
            case_id=ctx.case_id,
            run_id=ctx.run_id,
            event_type=EventType.STEP_STARTED,
            step_number=step_number,
            payload={"run_id": ctx.run_id, "resumed": not created},
        )

        async def attempt() -> GeneratedResult:
            if ctx.faults is not None:
                ctx.faults.before_attempt(step_number)
            return await self._client.generate(ctx.case_id, STEP_NAMES[step_number])

        started = time.monotonic()
        retry_count = 0
        try:
            result = await execute_with_backoff(
                attempt,
                self._policy,
                is_retryable=is_retryable_generation_error,
                sleep=self._sleep,
            )
            retry_count = result.retry_count
            payload = StepPayload.from_content(step_number, result.value.content)
        except OperationFailedError as exc:
            error = str(exc.cause)
            retry_count = exc.retry_count
            if exc.exhausted:
                error_kind = StepErrorKind.RATE_LIMITED_EXHAUSTED
            elif isinstance(exc.cause, InjectedFailureError):
                error_kind = StepErrorKind.INJECTED
            else:
                error_kind = StepErrorKind.FATAL
        except StepOutputError as exc:
            error = str(exc)
            error_kind = StepErrorKind.INVALID_OUTPUT
        else:
            echoed = find_echoed_fields(payload.data, source_text)
            if echoed:
                logger.warning(
                    "Step %d of case %s copies source text in %s",
                    step_number,
                    ctx.case_id,
                    ", ".join(echoed),
                )
                payload = payload.model_copy(
                    update={"warnings": [*payload.warnings, echo_warning(echoed)]}
                )
            duration_ms = int((time.monotonic() - started) * 1000)
            tokens = result.value.usage.tokens
            self._ledger.mark_completed(
                step,
                payload=payload,
                tokens_used=tokens,
                duration_ms=duration_ms,
                retry_count=retry_count,
            )
            self._ledger.append_event(
                case_id=ctx.case_id,
                run_id=ctx.run_id,
                event_type=EventType.STEP_COMPLETED,
                step_number=step_number,
                payload={
                    "run_id": ctx.run_id,
                    "duration_ms": duration_ms,
                    "tokens": tokens,
                    "retry_count": retry_count,
                },
            )
            return StepOutcome(
                step_number,
                StepOutcomeStatus.COMPLETED,
                retry_count=retry_count,
                tokens=tokens,
                duration_ms=duration_ms,
            )

        injected = error_kind == StepErrorKind.INJECTED
        duration_ms = int((time.monotonic() - started) * 1000)
        self._ledger.mark_failed(
            step, error=error, duration_ms=duration_ms, retry_count=retry_count
        )
        self._ledger.append_event(
            case_id=ctx.case_id,
            run_id=ctx.run_id,
            event_type=EventType.STEP_FAILED,
            step_number=step_number,
            payload={
                "run_id": ctx.run_id,
                "error": error,
                "error_kind": error_kind.value,
                "retry_count": retry_count,
                "injected": injected,
            },
        )
        return StepOutcome(
            step_number,
            StepOutcomeStatus.FAILED,
            retry_count=retry_count,
            duration_ms=duration_ms,
            error=error,
            error_kind=error_kind,
            injected=injected,
        )
