"""
Event envelope utilities for real-time messages.

Every frame sent to a browser session has the same shape:
- event_type: str
- timestamp: ISO 8601 UTC with 'Z'
- sequence_number: int (monotonic per-process)
- user_id: optional
- data: dict payload
"""

import itertools
from datetime import UTC, datetime
from typing import Any

_sequence = itertools.count(1)


def utc_now_z() -> str:
    """Return current UTC time in ISO 8601 format with 'Z' suffix."""
    return datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def build_event(
    event_type: str,
    data: dict[str, Any] | None = None,
    *,
    user_id: str | None = None,
    sequence_number: int | None = None,
) -> dict[str, Any]:
    """
    Create a normalized event envelope.

    Args:
        event_type: Type of event
        data: Event data payload
        user_id: Optional user the event is addressed to
        sequence_number: Optional explicit sequence number
    """
    event: dict[str, Any] = {
        "event_type": event_type,
        "timestamp": utc_now_z(),
        "sequence_number": sequence_number if sequence_number is not None else next(_sequence),
        "data": data or {},
    }
    if user_id is not None:
        event["user_id"] = user_id
    return event
