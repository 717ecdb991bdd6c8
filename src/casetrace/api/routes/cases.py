"""Case read routes: steps, events and report.

GET /v1/case/{caseId}/steps  - step records in step order
GET /v1/case/{caseId}/events - event trail, filterable by cursor and step
GET /v1/case/{caseId}/report - final report of the latest successful run
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query
from pydantic import Field

from casetrace.api.errors import CaseTraceHttpError
from casetrace.api.schemas import CamelModel
from casetrace.models.case import Case
from casetrace.models.case_event import CaseEvent
from casetrace.models.case_step import TOTAL_STEPS, CaseStep
from casetrace.persistence.repositories.case_events import get_case_events_repository
from casetrace.persistence.repositories.case_steps import get_case_steps_repository
from casetrace.persistence.repositories.cases import get_cases_repository
from casetrace.persistence.repositories.reports import get_reports_repository

router = APIRouter(prefix="/v1", tags=["Cases"])


class CaseStepResponse(CamelModel):
    """One step record."""

    step_number: int
    title: str
    status: str
    started_at: str | None = None
    completed_at: str | None = None
    schema_version: int | None = None
    data: dict[str, Any] | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    retry_count: int = 0
    tokens_used: int = 0
    duration_ms: int = 0


class CaseStepsResponse(CamelModel):
    """Step records of a case with its lifecycle status."""

    case_id: str
    case_status: str
    current_run_id: str | None = None
    steps: list[CaseStepResponse]


class CaseEventResponse(CamelModel):
    """One persisted lifecycle event."""

    seq: int
    event_id: str
    run_id: str
    event_type: str
    step_number: int
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str


class CaseEventsResponse(CamelModel):
    """Events after a cursor; ``next_cursor`` is the last seq returned."""

    case_id: str
    events: list[CaseEventResponse]
    next_cursor: int


class ReportResponse(CamelModel):
    """Final case report."""

    case_id: str
    narrative: str
    diagram: str
    tokens_used: int
    duration_ms: int
    created_at: str | None = None
    updated_at: str | None = None


def _require_case(case_id: str) -> Case:
    case = get_cases_repository().get(case_id)
    if case is None:
        raise CaseTraceHttpError(status_code=404, code="CASE_NOT_FOUND", message="Case not found")
    return case


def _step_to_response(step: CaseStep) -> CaseStepResponse:
    return CaseStepResponse(
        step_number=step.step_number,
        title=step.title,
        status=step.status.value,
        started_at=step.started_at,
        completed_at=step.completed_at,
        schema_version=step.payload.schema_version if step.payload else None,
        data=step.payload.data if step.payload else None,
        errors=step.errors,
        warnings=step.warnings,
        retry_count=step.retry_count,
        tokens_used=step.tokens_used,
        duration_ms=step.duration_ms,
    )


def _event_to_response(event: CaseEvent) -> CaseEventResponse:
    return CaseEventResponse(
        seq=event.seq,
        event_id=event.event_id,
        run_id=event.run_id,
        event_type=event.event_type.value,
        step_number=event.step_number,
        payload=event.payload,
        created_at=event.created_at,
    )


@router.get("/case/{case_id}/steps", response_model=CaseStepsResponse)
def list_case_steps(case_id: str) -> CaseStepsResponse:
    """List the step records of a case, ordered by step number.

    Steps that were never started have no record and are not listed.
    """
    case = _require_case(case_id)
    steps = get_case_steps_repository().list_for_case(case_id)
    return CaseStepsResponse(
        case_id=case_id,
        case_status=case.status.value,
        current_run_id=case.current_run_id,
        steps=[_step_to_response(s) for s in steps],
    )


@router.get("/case/{case_id}/events", response_model=CaseEventsResponse)
def list_case_events(
    case_id: str,
    after: int = Query(default=0, ge=0, description="Return events with seq greater than this"),
    from_step: int | None = Query(
        default=None, alias="fromStep", ge=1, le=TOTAL_STEPS, description="Lowest step to include"
    ),
) -> CaseEventsResponse:
    """Return the event trail of a case in append order.

    Args:
        case_id: Case to read.
        after: Reconnect cursor (last seq the client has seen).
        from_step: Drop events for steps below this number.
    """
    _require_case(case_id)
    events = get_case_events_repository().list_for_case(
        case_id, after_seq=after, from_step=from_step
    )
    return CaseEventsResponse(
        case_id=case_id,
        events=[_event_to_response(e) for e in events],
        next_cursor=events[-1].seq if events else after,
    )


@router.get("/case/{case_id}/report", response_model=ReportResponse)
def get_case_report(case_id: str) -> ReportResponse:
    """Return the report written by the latest fully successful run."""
    _require_case(case_id)
    report = get_reports_repository().get(case_id)
    if report is None:
        raise CaseTraceHttpError(
            status_code=404, code="REPORT_NOT_FOUND", message="Report not found"
        )
    return ReportResponse(
        case_id=report.case_id,
        narrative=report.narrative,
        diagram=report.diagram,
        tokens_used=report.tokens_used,
        duration_ms=report.duration_ms,
        created_at=report.created_at,
        updated_at=report.updated_at,
    )
