"""What a patient may do with a prescription right now.

resolve() is recomputed on every render; nothing here is cached because
the answer changes as `now` crosses the availability gate.
"""

from __future__ import annotations

from datetime import datetime

from careloop.models import (
    ABANDONED,
    ACTIVE,
    COMPLETED,
    PAUSED,
    PRESCRIBED,
    Availability,
    ProtocolAssignment,
)

BLUE = "#1697F5"
GREEN = "#4ade80"
AMBER = "#f59e0b"
RED = "#EF4444"
GRAY = "#6B7280"

STATUS_DISPLAY = {
    PRESCRIBED: ("Not Started", BLUE),
    ACTIVE: ("Active", GREEN),
    PAUSED: ("Paused", AMBER),
    COMPLETED: ("Completed", GREEN),
    ABANDONED: ("Abandoned", RED),
}
UNKNOWN_DISPLAY = ("Unknown", GRAY)


def parse_timestamp(value: str, tz=None) -> datetime | None:
    """Parse an ISO date or datetime; naive values take *tz*. None if invalid."""
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    if parsed.tzinfo is None and tz is not None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def is_available(assignment: ProtocolAssignment, now: datetime) -> bool:
    """True once `now` has reached the availability gate (or there is none).

    An unparseable gate stays closed.
    """
    if not assignment.available_from:
        return True
    gate = parse_timestamp(assignment.available_from, now.tzinfo)
    if gate is None:
        return False
    if (gate.tzinfo is None) != (now.tzinfo is None):
        # naive now against an aware gate: compare wall-clock values
        gate = gate.replace(tzinfo=None)
        now = now.replace(tzinfo=None)
    return now >= gate


def resolve(assignment: ProtocolAssignment, now: datetime) -> Availability:
    display_status, display_color = STATUS_DISPLAY.get(assignment.status, UNKNOWN_DISPLAY)
    can_start = (
        assignment.status == PRESCRIBED
        and assignment.actual_start_date is None
        and is_available(assignment, now)
    )
    return Availability(
        can_start=can_start,
        is_active=assignment.status == ACTIVE,
        display_status=display_status,
        display_color=display_color,
    )


def start_block_reason(assignment: ProtocolAssignment, now: datetime) -> str | None:
    """Explain why *assignment* cannot be started now, or None if it can."""
    if assignment.status == ACTIVE:
        return "This protocol is already active."
    if assignment.status != PRESCRIBED:
        return f"Protocol cannot be started in its current status: {assignment.status or 'UNKNOWN'}"
    if assignment.actual_start_date is not None:
        return f"This protocol was already started on {assignment.actual_start_date[:10]}."
    if not is_available(assignment, now):
        return f"This protocol is not available until {assignment.available_from}."
    return None
