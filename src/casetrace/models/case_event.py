"""CaseEvent model: append-only step lifecycle trail for a case.

Events are written by the orchestrator and never updated or deleted by it.
``seq`` is assigned by the store at append time and increases monotonically
across all cases; streaming consumers use the last seen ``seq`` as their
reconnect cursor.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """Kinds of step lifecycle transitions."""

    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"


class CaseEvent(BaseModel):
    """Single persisted lifecycle event.

    Attributes:
        seq: Store-assigned monotonic sequence number.
        event_id: Unique UUID for the event.
        case_id: Case the event belongs to.
        run_id: Run that emitted the event.
        event_type: Transition kind.
        step_number: Step the transition concerns.
        payload: Event-specific data (always includes ``step_number``).
        created_at: ISO timestamp at append time.
    """

    seq: int
    event_id: str
    case_id: str
    run_id: str
    event_type: EventType
    step_number: int
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
