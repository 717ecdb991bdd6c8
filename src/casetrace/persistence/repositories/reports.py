"""Report repository: one report per case, replaced by upsert."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import text

from casetrace.clock import to_iso, utc_now_iso
from casetrace.models.report import Report
from casetrace.persistence.db import get_app_engine, is_postgres_configured

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@runtime_checkable
class ReportsRepo(Protocol):
    """Structural interface for report repositories."""

    def upsert(self, report: Report) -> Report: ...

    def get(self, case_id: str) -> Report | None: ...


_reports_store: dict[str, dict[str, Any]] = {}
"""Global in-memory report store keyed by case_id."""

_reports_lock = threading.Lock()


class InMemoryReportsRepository:
    """In-memory report repository."""

    def upsert(self, report: Report) -> Report:
        """Insert or replace the case's report, keeping the original created_at."""
        now = utc_now_iso()
        with _reports_lock:
            existing = _reports_store.get(report.case_id)
            created_at = existing["created_at"] if existing else now
            stored = report.model_copy(update={"created_at": created_at, "updated_at": now})
            _reports_store[report.case_id] = stored.model_dump()
        return stored

    def get(self, case_id: str) -> Report | None:
        """Return the case's report or None."""
        data = _reports_store.get(case_id)
        if data is None:
            return None
        return Report.model_validate(data)


class PostgresReportsRepository:
    """Postgres report repository.

    Args:
        engine: SQLAlchemy engine for the application database.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def upsert(self, report: Report) -> Report:
        """Insert or replace the case's report in a single statement."""
        with self._engine.begin() as conn:
            row = conn.execute(
                text(
                    """
                    INSERT INTO reports (case_id, narrative, diagram, tokens_used, duration_ms)
                    VALUES (:case_id, :narrative, :diagram, :tokens_used, :duration_ms)
                    ON CONFLICT (case_id) DO UPDATE SET
                        narrative = EXCLUDED.narrative,
                        diagram = EXCLUDED.diagram,
                        tokens_used = EXCLUDED.tokens_used,
                        duration_ms = EXCLUDED.duration_ms,
                        updated_at = now()
                    RETURNING created_at, updated_at
                    """
                ),
                {
                    "case_id": report.case_id,
                    "narrative": report.narrative,
                    "diagram": report.diagram,
                    "tokens_used": report.tokens_used,
                    "duration_ms": report.duration_ms,
                },
            ).fetchone()
        return report.model_copy(
            update={"created_at": to_iso(row.created_at), "updated_at": to_iso(row.updated_at)}
        )

    def get(self, case_id: str) -> Report | None:
        """Return the case's report or None."""
        with self._engine.begin() as conn:
            row = conn.execute(
                text(
                    """
                    SELECT case_id, narrative, diagram, tokens_used, duration_ms,
                           created_at, updated_at
                    FROM reports
                    WHERE case_id = :case_id
                    """
                ),
                {"case_id": case_id},
            ).fetchone()
        if row is None:
            return None
        return Report(
            case_id=str(row.case_id),
            narrative=row.narrative,
            diagram=row.diagram,
            tokens_used=row.tokens_used,
            duration_ms=row.duration_ms,
            created_at=to_iso(row.created_at),
            updated_at=to_iso(row.updated_at),
        )


def clear_reports_store() -> None:
    """Clear the in-memory report store. For testing only."""
    with _reports_lock:
        _reports_store.clear()


def get_reports_repository(
    engine: Engine | None = None,
) -> PostgresReportsRepository | InMemoryReportsRepository:
    """Factory returning the Postgres repository when configured, else in-memory."""
    if is_postgres_configured():
        return PostgresReportsRepository(engine or get_app_engine())
    return InMemoryReportsRepository()
