"""Daily completion statistics across habits."""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Iterable

from careloop.config import today_str
from careloop.models import Habit, HabitStats
from careloop.progress import day_key, is_completed_on


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def habit_stats(habits: Iterable[Habit] | None, day: date | datetime | str | None = None) -> HabitStats:
    """Count habits checked on *day* (default: today) and the rounded rate."""
    habits = list(habits or [])
    target = day_key(day) if day is not None else today_str()
    total = len(habits)
    completed = sum(1 for h in habits if is_completed_on(h, target))
    rate = _round_half_up(completed / total * 100) if total > 0 else 0
    return HabitStats(total=total, completed=completed, completion_rate=rate)
