"""CaseEvent repository: append-only event log with a sequence cursor.

There is no update or delete path. ``list_for_case`` returns events in
append order and accepts ``after_seq`` so a reconnecting consumer can resume
exactly where it stopped.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import text

from casetrace.clock import format_iso, to_iso, utc_now_iso
from casetrace.models.case_event import CaseEvent, EventType
from casetrace.persistence.db import get_app_engine, is_postgres_configured

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@runtime_checkable
class CaseEventsRepo(Protocol):
    """Structural interface for event log repositories."""

    def append(
        self,
        *,
        case_id: str,
        run_id: str,
        event_type: EventType,
        step_number: int,
        payload: dict[str, Any],
    ) -> CaseEvent: ...

    def list_for_case(
        self,
        case_id: str,
        *,
        after_seq: int = 0,
        from_step: int | None = None,
    ) -> list[CaseEvent]: ...


_case_events_store: list[dict[str, Any]] = []
"""Global in-memory event log in append order."""

_case_events_lock = threading.Lock()
_seq_counter = itertools.count(1)
_last_event_time: datetime | None = None


def _next_event_time() -> str:
    """Append timestamp, strictly later than the previous one. Call under the lock."""
    global _last_event_time
    now = datetime.now(UTC)
    if _last_event_time is not None and now <= _last_event_time:
        now = _last_event_time + timedelta(microseconds=1)
    _last_event_time = now
    return format_iso(now)


class InMemoryCaseEventsRepository:
    """In-memory append-only event log."""

    def append(
        self,
        *,
        case_id: str,
        run_id: str,
        event_type: EventType,
        step_number: int,
        payload: dict[str, Any],
    ) -> CaseEvent:
        """Append an event, assigning the next sequence number."""
        with _case_events_lock:
            event = CaseEvent(
                seq=next(_seq_counter),
                event_id=str(uuid.uuid4()),
                case_id=case_id,
                run_id=run_id,
                event_type=event_type,
                step_number=step_number,
                payload=dict(payload),
                created_at=_next_event_time(),
            )
            _case_events_store.append(event.model_dump())
        return event

    def list_for_case(
        self,
        case_id: str,
        *,
        after_seq: int = 0,
        from_step: int | None = None,
    ) -> list[CaseEvent]:
        """Return the case's events with seq > after_seq, in append order.

        Args:
            case_id: Case to list events for.
            after_seq: Reconnect cursor; only later events are returned.
            from_step: If set, drop events for steps below this number.
        """
        return [
            CaseEvent.model_validate(data)
            for data in list(_case_events_store)
            if data["case_id"] == case_id
            and data["seq"] > after_seq
            and (from_step is None or data["step_number"] >= from_step)
        ]


class PostgresCaseEventsRepository:
    """Postgres event log; ``seq`` is a BIGSERIAL column.

    Args:
        engine: SQLAlchemy engine for the application database.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def append(
        self,
        *,
        case_id: str,
        run_id: str,
        event_type: EventType,
        step_number: int,
        payload: dict[str, Any],
    ) -> CaseEvent:
        """Append an event; the database assigns seq and created_at."""
        event_id = str(uuid.uuid4())
        with self._engine.begin() as conn:
            row = conn.execute(
                text(
                    """
                    INSERT INTO case_events
                        (event_id, case_id, run_id, event_type, step_number, payload)
                    VALUES
                        (:event_id, :case_id, :run_id, :event_type, :step_number,
                         CAST(:payload AS JSONB))
                    RETURNING seq, created_at
                    """
                ),
                {
                    "event_id": event_id,
                    "case_id": case_id,
                    "run_id": run_id,
                    "event_type": EventType(event_type).value,
                    "step_number": step_number,
                    "payload": json.dumps(payload),
                },
            ).fetchone()
        return CaseEvent(
            seq=row.seq,
            event_id=event_id,
            case_id=case_id,
            run_id=run_id,
            event_type=event_type,
            step_number=step_number,
            payload=dict(payload),
            created_at=to_iso(row.created_at) or utc_now_iso(),
        )

    def list_for_case(
        self,
        case_id: str,
        *,
        after_seq: int = 0,
        from_step: int | None = None,
    ) -> list[CaseEvent]:
        """Return the case's events with seq > after_seq, in append order."""
        query = """
            SELECT seq, event_id, case_id, run_id, event_type, step_number, payload, created_at
            FROM case_events
            WHERE case_id = :case_id AND seq > :after_seq
        """
        params: dict[str, Any] = {"case_id": case_id, "after_seq": after_seq}
        if from_step is not None:
            query += " AND step_number >= :from_step"
            params["from_step"] = from_step
        query += " ORDER BY seq"

        with self._engine.begin() as conn:
            rows = conn.execute(text(query), params).fetchall()

        return [
            CaseEvent(
                seq=row.seq,
                event_id=str(row.event_id),
                case_id=str(row.case_id),
                run_id=str(row.run_id),
                event_type=row.event_type,
                step_number=row.step_number,
                payload=json.loads(row.payload) if isinstance(row.payload, str) else row.payload,
                created_at=to_iso(row.created_at),
            )
            for row in rows
        ]


def clear_case_events_store() -> None:
    """Clear the in-memory event log and restart its sequence. For testing only."""
    global _seq_counter
    with _case_events_lock:
        _case_events_store.clear()
        _seq_counter = itertools.count(1)


def get_case_events_repository(
    engine: Engine | None = None,
) -> PostgresCaseEventsRepository | InMemoryCaseEventsRepository:
    """Factory returning the Postgres repository when configured, else in-memory."""
    if is_postgres_configured():
        return PostgresCaseEventsRepository(engine or get_app_engine())
    return InMemoryCaseEventsRepository()
