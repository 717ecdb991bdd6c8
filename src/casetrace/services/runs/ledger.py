"""StepLedger: step row transitions and event appends, without business logic."""

from __future__ import annotations

from typing import Any

from casetrace.clock import utc_now_iso
from casetrace.models.case_event import CaseEvent, EventType
from casetrace.models.case_step import CaseStep, StepPayload, StepStatus
from casetrace.persistence.repositories.case_events import CaseEventsRepo
from casetrace.persistence.repositories.case_steps import CaseStepsRepo


class StepLedger:
    """Thin persistence glue over the step store and the event log.

    Args:
        steps_repo: Step store.
        events_repo: Append-only event log.
    """

    def __init__(self, steps_repo: CaseStepsRepo, events_repo: CaseEventsRepo) -> None:
        self._steps = steps_repo
        self._events = events_repo

    def get_or_create_step(self, case_id: str, step_number: int) -> tuple[CaseStep, bool]:
        """Load the step row, creating a pending one if absent."""
        return self._steps.get_or_create(case_id, step_number)

    def list_steps(self, case_id: str) -> list[CaseStep]:
        """All step rows of a case, ordered by step number."""
        return self._steps.list_for_case(case_id)

    def mark_processing(self, step: CaseStep) -> CaseStep:
        """Move a step to processing and stamp ``started_at``."""
        updated = step.model_copy(
            update={
                "status": StepStatus.PROCESSING,
                "started_at": utc_now_iso(),
                "completed_at": None,
            }
        )
        return self._steps.update(updated)

    def mark_completed(
        self,
        step: CaseStep,
        *,
        payload: StepPayload,
        tokens_used: int,
        duration_ms: int,
        retry_count: int,
    ) -> CaseStep:
        """Store the validated payload and usage, and mark the step completed."""
        updated = step.model_copy(
            update={
                "status": StepStatus.COMPLETED,
                "completed_at": utc_now_iso(),
                "payload": payload,
                "errors": list(payload.errors),
                "warnings": list(payload.warnings),
                "tokens_used": tokens_used,
                "duration_ms": duration_ms,
                "retry_count": retry_count,
            }
        )
        return self._steps.update(updated)

    def mark_failed(
        self,
        step: CaseStep,
        *,
        error: str,
        duration_ms: int,
        retry_count: int,
    ) -> CaseStep:
        """Record the failure message and mark the step failed."""
        updated = step.model_copy(
            update={
                "status": StepStatus.FAILED,
                "completed_at": utc_now_iso(),
                "errors": [error],
                "warnings": [],
                "duration_ms": duration_ms,
                "retry_count": retry_count,
            }
        )
        return self._steps.update(updated)

    def append_event(
        self,
        *,
        case_id: str,
        run_id: str,
        event_type: EventType,
        step_number: int,
        payload: dict[str, Any],
    ) -> CaseEvent:
        """Append a lifecycle event; ``step_number`` is always included in the payload."""
        return self._events.append(
            case_id=case_id,
            run_id=run_id,
            event_type=event_type,
            step_number=step_number,
            payload={"step_number": step_number, **payload},
        )
