"""Date-indexed completion lookup and merge for habits."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

from careloop.models import Habit, ProgressEntry


def day_key(day: date | datetime | str) -> str:
    """Calendar-day string (YYYY-MM-DD) for a date, datetime or ISO string."""
    if isinstance(day, datetime):
        return day.date().isoformat()
    if isinstance(day, date):
        return day.isoformat()
    return str(day).strip()[:10]


def progress_map(habit: Habit) -> dict[str, bool]:
    return {entry.date: entry.is_checked for entry in habit.progress}


def is_completed_on(habit: Habit, day: date | datetime | str) -> bool:
    """A missing entry reads as not completed."""
    return progress_map(habit).get(day_key(day), False)


def merge(habit: Habit, day: date | datetime | str, is_checked: bool) -> Habit:
    """Return a copy of *habit* with the entry for *day* set to *is_checked*.

    An existing entry keeps its position; otherwise one is appended.
    """
    key = day_key(day)
    entries = []
    found = False
    for entry in habit.progress:
        if entry.date == key:
            if not found:
                entries.append(ProgressEntry(date=key, is_checked=bool(is_checked)))
                found = True
            continue
        entries.append(entry)
    if not found:
        entries.append(ProgressEntry(date=key, is_checked=bool(is_checked)))
    return replace(habit, progress=tuple(entries))
