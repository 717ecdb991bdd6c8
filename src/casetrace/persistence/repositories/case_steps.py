"""CaseStep repository: persistence for the per-case step ledger.

Rows are unique on (case_id, step_number). ``get_or_create`` is the only
insertion path, so two callers racing on the same step end up sharing one
row instead of duplicating it.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import text

from casetrace.clock import to_iso
from casetrace.models.case_step import CaseStep, StepPayload, StepStatus
from casetrace.persistence.db import get_app_engine, is_postgres_configured

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

_STEP_COLUMNS = """
    step_id, case_id, step_number, status, started_at, completed_at,
    payload, errors, warnings, retry_count, tokens_used, duration_ms
"""


@runtime_checkable
class CaseStepsRepo(Protocol):
    """Structural interface for case step repositories."""

    def get_or_create(self, case_id: str, step_number: int) -> tuple[CaseStep, bool]: ...

    def get(self, case_id: str, step_number: int) -> CaseStep | None: ...

    def list_for_case(self, case_id: str) -> list[CaseStep]: ...

    def update(self, step: CaseStep) -> CaseStep: ...


_case_steps_store: dict[tuple[str, int], dict[str, Any]] = {}
"""Global in-memory store keyed by (case_id, step_number)."""

_case_steps_lock = threading.Lock()


class InMemoryCaseStepsRepository:
    """In-memory step repository for development and tests."""

    def get_or_create(self, case_id: str, step_number: int) -> tuple[CaseStep, bool]:
        """Return the step row, creating a pending one if absent.

        Returns:
            Tuple of (step, created) where created is True for a new row.
        """
        key = (case_id, step_number)
        with _case_steps_lock:
            data = _case_steps_store.get(key)
            if data is not None:
                return CaseStep.model_validate(data), False
            step = CaseStep(step_id=str(uuid.uuid4()), case_id=case_id, step_number=step_number)
            _case_steps_store[key] = step.model_dump()
            return step, True

    def get(self, case_id: str, step_number: int) -> CaseStep | None:
        """Return the step row or None."""
        data = _case_steps_store.get((case_id, step_number))
        if data is None:
            return None
        return CaseStep.model_validate(data)

    def list_for_case(self, case_id: str) -> list[CaseStep]:
        """Return all step rows for a case ordered by step number."""
        steps = [
            CaseStep.model_validate(data)
            for (owner, _), data in _case_steps_store.items()
            if owner == case_id
        ]
        steps.sort(key=lambda s: s.step_number)
        return steps

    def update(self, step: CaseStep) -> CaseStep:
        """Replace an existing step row.

        Raises:
            KeyError: If the row does not exist.
        """
        key = (step.case_id, step.step_number)
        with _case_steps_lock:
            if key not in _case_steps_store:
                raise KeyError(f"Step {step.step_number} of case {step.case_id} not found")
            _case_steps_store[key] = step.model_dump()
        return step


class PostgresCaseStepsRepository:
    """Postgres step repository; one short transaction per call.

    Args:
        engine: SQLAlchemy engine for the application database.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get_or_create(self, case_id: str, step_number: int) -> tuple[CaseStep, bool]:
        """Return the step row, creating a pending one if absent."""
        with self._engine.begin() as conn:
            inserted = conn.execute(
                text(
                    """
                    INSERT INTO case_steps (step_id, case_id, step_number, status)
                    VALUES (:step_id, :case_id, :step_number, 'pending')
                    ON CONFLICT (case_id, step_number) DO NOTHING
                    RETURNING step_id
                    """
                ),
                {"step_id": str(uuid.uuid4()), "case_id": case_id, "step_number": step_number},
            ).fetchone()
            row = conn.execute(
                text(
                    f"""
                    SELECT {_STEP_COLUMNS}
                    FROM case_steps
                    WHERE case_id = :case_id AND step_number = :step_number
                    """
                ),
                {"case_id": case_id, "step_number": step_number},
            ).fetchone()
        return self._row_to_model(row), inserted is not None

    def get(self, case_id: str, step_number: int) -> CaseStep | None:
        """Return the step row or None."""
        with self._engine.begin() as conn:
            row = conn.execute(
                text(
                    f"""
                    SELECT {_STEP_COLUMNS}
                    FROM case_steps
                    WHERE case_id = :case_id AND step_number = :step_number
                    """
                ),
                {"case_id": case_id, "step_number": step_number},
            ).fetchone()
        if row is None:
            return None
        return self._row_to_model(row)

    def list_for_case(self, case_id: str) -> list[CaseStep]:
        """Return all step rows for a case ordered by step number."""
        with self._engine.begin() as conn:
            rows = conn.execute(
                text(
                    f"""
                    SELECT {_STEP_COLUMNS}
                    FROM case_steps
                    WHERE case_id = :case_id
                    ORDER BY step_number
                    """
                ),
                {"case_id": case_id},
            ).fetchall()
        return [self._row_to_model(row) for row in rows]

    def update(self, step: CaseStep) -> CaseStep:
        """Write all mutable columns of an existing step row.

        Raises:
            KeyError: If the row does not exist.
        """
        with self._engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    UPDATE case_steps SET
                        status = :status,
                        started_at = :started_at,
                        completed_at = :completed_at,
                        payload = CAST(:payload AS JSONB),
                        errors = CAST(:errors AS JSONB),
                        warnings = CAST(:warnings AS JSONB),
                        retry_count = :retry_count,
                        tokens_used = :tokens_used,
                        duration_ms = :duration_ms
                    WHERE case_id = :case_id AND step_number = :step_number
                    """
                ),
                {
                    "case_id": step.case_id,
                    "step_number": step.step_number,
                    "status": StepStatus(step.status).value,
                    "started_at": step.started_at,
                    "completed_at": step.completed_at,
                    "payload": (
                        json.dumps(step.payload.model_dump()) if step.payload is not None else None
                    ),
                    "errors": json.dumps(step.errors),
                    "warnings": json.dumps(step.warnings),
                    "retry_count": step.retry_count,
                    "tokens_used": step.tokens_used,
                    "duration_ms": step.duration_ms,
                },
            )
        if not result.rowcount:
            raise KeyError(f"Step {step.step_number} of case {step.case_id} not found")
        return step

    def _row_to_model(self, row: Any) -> CaseStep:
        """Convert a database row to a CaseStep."""

        def _json(value: Any) -> Any:
            return json.loads(value) if isinstance(value, str) else value

        payload = _json(row.payload)
        return CaseStep(
            step_id=str(row.step_id),
            case_id=str(row.case_id),
            step_number=row.step_number,
            status=row.status,
            started_at=to_iso(row.started_at),
            completed_at=to_iso(row.completed_at),
            payload=StepPayload.model_validate(payload) if payload else None,
            errors=_json(row.errors) or [],
            warnings=_json(row.warnings) or [],
            retry_count=row.retry_count,
            tokens_used=row.tokens_used,
            duration_ms=row.duration_ms,
        )


def clear_case_steps_store() -> None:
    """Clear the in-memory step store. For testing only."""
    with _case_steps_lock:
        _case_steps_store.clear()


def get_case_steps_repository(
    engine: Engine | None = None,
) -> PostgresCaseStepsRepository | InMemoryCaseStepsRepository:
    """Factory returning the Postgres repository when configured, else in-memory."""
    if is_postgres_configured():
        return PostgresCaseStepsRepository(engine or get_app_engine())
    return InMemoryCaseStepsRepository()
