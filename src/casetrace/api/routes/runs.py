"""Runs route: POST /v1/case/{caseId}/run.

Runs the six-step orchestrator for a case, optionally resuming from a later
step. The run executes in a shielded task so that a client disconnect does
not abort it; the client can follow progress through the events endpoint.

Status mapping:
- 200: run finished (``success`` false when a step failed and halted it)
- 400: NO_DOCUMENTS, INVALID_RESUME or INVALID_REQUEST
- 404: CASE_NOT_FOUND
- 409: RUN_IN_PROGRESS, with ``error`` and ``currentRunId`` at top level
- 500: INTERNAL_ERROR, with the step counts reached before the error in
  ``details``
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from typing import Any

from fastapi import APIRouter, Request
from pydantic import ConfigDict, Field, ValidationError

from casetrace.api.errors import CaseTraceHttpError
from casetrace.api.schemas import CamelModel
from casetrace.persistence.repositories.case_events import get_case_events_repository
from casetrace.persistence.repositories.case_steps import get_case_steps_repository
from casetrace.persistence.repositories.cases import get_cases_repository
from casetrace.persistence.repositories.reports import get_reports_repository
from casetrace.services.generation.client import GenerationClient, build_generation_client
from casetrace.services.runs.backoff import BackoffPolicy
from casetrace.services.runs.errors import (
    CaseNotFoundError,
    InvalidResumeError,
    NoDocumentsError,
    RunAbortedError,
    RunConflictError,
)
from casetrace.services.runs.faults import FaultPlan
from casetrace.services.runs.orchestrator import (
    RunContext,
    RunOrchestrator,
    RunOutcome,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Runs"])

FAULT_INJECTION_ENV = "CASETRACE_ENABLE_FAULT_INJECTION"


class FaultPlanRequest(CamelModel):
    """Test-only fault injection settings."""

    fail_step: int | None = Field(default=None, ge=1, le=6)
    rate_limited_attempts: dict[int, int] = Field(default_factory=dict)


class RunRequest(CamelModel):
    """Optional body of POST /v1/case/{caseId}/run."""

    model_config = ConfigDict(extra="forbid")

    resume_from_step: int | None = None
    faults: FaultPlanRequest | None = None


class RunStepResponse(CamelModel):
    """Outcome of one step within the run."""

    step_number: int
    status: str
    reason: str | None = None
    retry_count: int = 0
    tokens: int = 0
    duration_ms: int = 0
    error: str | None = None
    error_kind: str | None = None


class RunResponse(CamelModel):
    """Body of a 200 run response."""

    success: bool
    case_id: str
    run_id: str
    steps_completed: int
    steps_skipped: int
    steps_failed: int
    failed_at_step: int | None = None
    error: str | None = None
    error_kind: str | None = None
    tokens_used: int = 0
    duration_ms: int = 0
    steps: list[RunStepResponse] = Field(default_factory=list)


async def _parse_run_request(request: Request) -> RunRequest:
    """Parse the optional JSON body; ``?resumeFromStep=`` is accepted as a fallback."""
    raw = await request.body()
    body: Any = {}
    if raw.strip():
        try:
            body = await request.json()
        except ValueError as exc:
            raise CaseTraceHttpError(
                status_code=400,
                code="INVALID_REQUEST",
                message="Request body must be valid JSON",
            ) from exc
    if not isinstance(body, dict):
        raise CaseTraceHttpError(
            status_code=400,
            code="INVALID_REQUEST",
            message="Request body must be a JSON object",
        )

    query_resume = request.query_params.get("resumeFromStep")
    if query_resume is not None and "resumeFromStep" not in body:
        body = {**body, "resumeFromStep": query_resume}

    try:
        return RunRequest.model_validate(body)
    except ValidationError as exc:
        raise CaseTraceHttpError(
            status_code=400,
            code="INVALID_REQUEST",
            message="Invalid run request",
            details={
                "errors": [
                    {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
                    for e in exc.errors()
                ]
            },
        ) from exc


def _build_fault_plan(body: RunRequest) -> FaultPlan | None:
    if body.faults is None:
        return None
    if os.environ.get(FAULT_INJECTION_ENV, "0") != "1":
        raise CaseTraceHttpError(
            status_code=400,
            code="INVALID_REQUEST",
            message="Fault injection is disabled",
        )
    return FaultPlan(
        fail_step=body.faults.fail_step,
        rate_limited_attempts=dict(body.faults.rate_limited_attempts),
    )


def _get_generation_client(request: Request) -> GenerationClient:
    """Client injected into app state, else the one selected by environment."""
    client: GenerationClient | None = getattr(request.app.state, "generation_client", None)
    if client is not None:
        return client
    try:
        return build_generation_client()
    except ValueError as exc:
        logger.error("Generation backend misconfigured: %s", exc)
        raise CaseTraceHttpError(
            status_code=503,
            code="GENERATION_NOT_CONFIGURED",
            message="No generation backend is configured. Cannot proceed.",
        ) from exc


def _build_orchestrator(request: Request) -> RunOrchestrator:
    policy: BackoffPolicy | None = getattr(request.app.state, "backoff_policy", None)
    return RunOrchestrator(
        cases_repo=get_cases_repository(),
        steps_repo=get_case_steps_repository(),
        events_repo=get_case_events_repository(),
        reports_repo=get_reports_repository(),
        generation_client=_get_generation_client(request),
        backoff_policy=policy or BackoffPolicy.from_env(),
    )


def _retrieve_run_result(task: asyncio.Future[RunOutcome]) -> None:
    """Consume the run task's exception even when no request awaits it anymore."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Run task ended with %s: %s", type(exc).__name__, exc)


def _to_response(outcome: RunOutcome) -> RunResponse:
    return RunResponse(
        success=outcome.success,
        case_id=outcome.case_id,
        run_id=outcome.run_id,
        steps_completed=outcome.steps_completed,
        steps_skipped=outcome.steps_skipped,
        steps_failed=outcome.steps_failed,
        failed_at_step=outcome.failed_at_step,
        error=outcome.error,
        error_kind=outcome.error_kind.value if outcome.error_kind else None,
        tokens_used=outcome.tokens_used,
        duration_ms=outcome.duration_ms,
        steps=[
            RunStepResponse(
                step_number=s.step_number,
                status=s.status.value,
                reason=s.reason,
                retry_count=s.retry_count,
                tokens=s.tokens,
                duration_ms=s.duration_ms,
                error=s.error,
                error_kind=s.error_kind.value if s.error_kind else None,
            )
            for s in outcome.steps
        ],
    )


@router.post("/case/{case_id}/run", response_model=RunResponse)
async def run_case(case_id: str, request: Request) -> RunResponse:
    """Run (or resume) the six-step analysis for a case.

    Args:
        case_id: Case to run.
        request: FastAPI request for body and app state access.

    Returns:
        RunResponse with per-step outcomes and counts.

    Raises:
        CaseTraceHttpError: 400, 404 or 409 on precondition failures.
    """
    body = await _parse_run_request(request)
    faults = _build_fault_plan(body)
    orchestrator = _build_orchestrator(request)

    ctx = RunContext(
        case_id=case_id,
        run_id=str(uuid.uuid4()),
        start_step=body.resume_from_step if body.resume_from_step is not None else 1,
        faults=faults,
    )

    task = asyncio.ensure_future(orchestrator.execute(ctx))
    task.add_done_callback(_retrieve_run_result)
    try:
        outcome = await asyncio.shield(task)
    except CaseNotFoundError as exc:
        raise CaseTraceHttpError(status_code=404, code=exc.code, message="Case not found") from exc
    except (NoDocumentsError, InvalidResumeError) as exc:
        raise CaseTraceHttpError(status_code=400, code=exc.code, message=exc.message) from exc
    except RunConflictError as exc:
        raise CaseTraceHttpError(
            status_code=409,
            code=exc.code,
            message=exc.message,
            extra={"error": exc.message, "currentRunId": exc.current_run_id},
        ) from exc
    except RunAbortedError as exc:
        progress = exc.outcome
        raise CaseTraceHttpError(
            status_code=500,
            code=exc.code,
            message="An internal error occurred",
            details={
                "runId": progress.run_id,
                "stepsCompleted": progress.steps_completed,
                "stepsSkipped": progress.steps_skipped,
                "stepsFailed": progress.steps_failed,
            },
        ) from exc

    return _to_response(outcome)
