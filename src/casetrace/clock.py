"""UTC timestamp helpers shared by models, repositories and services.

Timestamps always carry six fractional digits so that their string form
sorts in the same order as the instants they name.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


def format_iso(value: datetime) -> str:
    """ISO-8601 with microseconds and a ``Z`` suffix for UTC."""
    return value.isoformat(timespec="microseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with a ``Z`` suffix."""
    return format_iso(datetime.now(UTC))


def to_iso(value: Any) -> str | None:
    """Render a database timestamp as ISO-8601; strings and None pass through."""
    if isinstance(value, datetime):
        return format_iso(value)
    return value
