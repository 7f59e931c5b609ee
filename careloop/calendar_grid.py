"""Month calendar grid for the habit tracker.

The grid always holds 6 full weeks (42 days), starting on the Sunday on
or before the 1st of the month, padded with days from the neighbouring
months.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from careloop.config import now_local
from careloop.models import CalendarDay

logger = logging.getLogger(__name__)

GRID_DAYS = 42


def parse_month(value: str) -> date | None:
    """Parse 'YYYY-MM' or 'YYYY-MM-DD...' to the 1st of the month, or None."""
    try:
        return datetime.strptime(str(value).strip()[:7], "%Y-%m").date()
    except ValueError:
        return None


def month_start(year_month: date | datetime | str) -> date:
    """Normalize a month reference to the 1st of that month.

    Accepts a date/datetime (any day of the month), 'YYYY-MM' or
    'YYYY-MM-DD...'. An unreadable string falls back to the current month.
    """
    if isinstance(year_month, datetime):
        return year_month.date().replace(day=1)
    if isinstance(year_month, date):
        return year_month.replace(day=1)
    first = parse_month(year_month)
    if first is None:
        logger.warning("Unreadable month %r, using the current month", year_month)
        return now_local().date().replace(day=1)
    return first


def build_month_grid(year_month: date | datetime | str) -> list[CalendarDay]:
    first = month_start(year_month)
    # date.weekday(): Monday=0 ... Sunday=6; shift so Sunday leads the week
    lead = (first.weekday() + 1) % 7
    start = first - timedelta(days=lead)
    grid = []
    for offset in range(GRID_DAYS):
        d = start + timedelta(days=offset)
        grid.append(CalendarDay(
            date=d.isoformat(),
            is_current_month=(d.year == first.year and d.month == first.month),
        ))
    return grid


def current_month_days(grid: list[CalendarDay]) -> list[CalendarDay]:
    return [d for d in grid if d.is_current_month]


def shift_month(year_month: date | datetime | str, delta: int) -> date:
    """Move *delta* months forward (negative: backward), landing on the 1st."""
    first = month_start(year_month)
    index = first.year * 12 + (first.month - 1) + delta
    return date(index // 12, index % 12 + 1, 1)


def month_param(year_month: date | datetime | str) -> str:
    """ISO value sent as the habits endpoint's ``month`` query parameter."""
    return month_start(year_month).isoformat()
