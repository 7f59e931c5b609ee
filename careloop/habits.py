"""Habit list, CRUD and progress toggling for the habit calendar.

Toggles are not optimistic: the local copy is only changed after the
server answers, and it takes the server's isChecked value rather than a
local flip. One toggle per habit may be in flight at a time, whatever
the date.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Callable

from careloop.calendar_grid import build_month_grid, month_param, month_start, shift_month
from careloop.config import now_local
from careloop.effects import CallToggle, Effect, ForwardSessionExpiry, Surface
from careloop.errors import (
    AuthError,
    CareloopError,
    ConcurrentToggle,
    HabitNotFound,
    HabitRequestFailed,
    InvalidHabit,
    ToggleFailed,
)
from careloop.models import VALID_CATEGORIES, CalendarDay, Habit, HabitStats
from careloop.progress import day_key, merge
from careloop.stats import habit_stats

logger = logging.getLogger(__name__)

CATEGORY_DISPLAY = {
    "personal": ("Personal", "#1697F5"),
    "health": ("Health", "#4ade80"),
    "work": ("Work", "#f59e0b"),
}


def category_display(category: str) -> tuple[str, str]:
    """(name, color) for a category; unknown categories show as Personal."""
    return CATEGORY_DISPLAY.get(category, CATEGORY_DISPLAY["personal"])


def validate_habit(habit: dict[str, Any]) -> list[str]:
    """Validate habit create/update data and return list of errors (empty if valid)."""
    errors = []
    title = habit.get("title")
    if not isinstance(title, str) or not title.strip():
        errors.append("Please enter a title for the habit.")
    if "category" in habit and habit["category"] not in VALID_CATEGORIES:
        errors.append(f"Invalid category: {habit['category']}")
    return errors


# ── State & events ────────────────────────────────────────────


@dataclass(frozen=True)
class HabitsState:
    habits: tuple[Habit, ...] = ()
    month: date | None = None
    updating: frozenset[str] = frozenset()
    mutation_seq: int = 0
    loaded: bool = False
    error: CareloopError | None = None

    def find(self, habit_id: str) -> Habit | None:
        for h in self.habits:
            if h.id == habit_id:
                return h
        return None


@dataclass(frozen=True)
class ToggleRequested:
    habit_id: str
    date: str


@dataclass(frozen=True)
class ToggleConfirmed:
    habit_id: str
    date: str
    is_checked: bool


@dataclass(frozen=True)
class ToggleRejected:
    habit_id: str
    error: CareloopError


@dataclass(frozen=True)
class HabitsLoaded:
    habits: tuple[Habit, ...]
    month: date
    seq_at_request: int


@dataclass(frozen=True)
class HabitSaved:
    habit: Habit


@dataclass(frozen=True)
class HabitRemoved:
    habit_id: str


@dataclass(frozen=True)
class RequestFailed:
    error: CareloopError


Event = (
    ToggleRequested | ToggleConfirmed | ToggleRejected | HabitsLoaded
    | HabitSaved | HabitRemoved | RequestFailed
)


def _fail(state: HabitsState, error: CareloopError, **changes: Any) -> tuple[HabitsState, list[Effect]]:
    effect: Effect = ForwardSessionExpiry(error) if isinstance(error, AuthError) else Surface(error)
    return replace(state, error=error, **changes), [effect]


def reduce(state: HabitsState, event: Event) -> tuple[HabitsState, list[Effect]]:
    if isinstance(event, ToggleRequested):
        if event.habit_id in state.updating:
            return _fail(state, ConcurrentToggle(event.habit_id))
        if state.find(event.habit_id) is None:
            return _fail(state, HabitNotFound(event.habit_id))
        return (
            replace(state, updating=state.updating | {event.habit_id}, error=None),
            [CallToggle(event.habit_id, event.date)],
        )

    if isinstance(event, ToggleConfirmed):
        habits = tuple(
            merge(h, event.date, event.is_checked) if h.id == event.habit_id else h
            for h in state.habits
        )
        return replace(
            state,
            habits=habits,
            updating=state.updating - {event.habit_id},
            mutation_seq=state.mutation_seq + 1,
        ), []

    if isinstance(event, ToggleRejected):
        return _fail(state, event.error, updating=state.updating - {event.habit_id})

    if isinstance(event, HabitsLoaded):
        if state.updating or event.seq_at_request != state.mutation_seq:
            logger.warning(
                "Discarding stale habit list (in flight: %s, seq %d -> %d)",
                sorted(state.updating), event.seq_at_request, state.mutation_seq,
            )
            return state, []
        return replace(state, habits=tuple(event.habits), month=event.month, loaded=True), []

    if isinstance(event, HabitSaved):
        habit = event.habit
        if state.find(habit.id) is None:
            habits = state.habits + (habit,)
        else:
            habits = tuple(habit if h.id == habit.id else h for h in state.habits)
        return replace(state, habits=habits, mutation_seq=state.mutation_seq + 1, error=None), []

    if isinstance(event, HabitRemoved):
        habits = tuple(h for h in state.habits if h.id != event.habit_id)
        return replace(state, habits=habits, mutation_seq=state.mutation_seq + 1, error=None), []

    if isinstance(event, RequestFailed):
        return _fail(state, event.error)

    raise TypeError(f"Unknown habits event: {event!r}")


# ── Controller ────────────────────────────────────────────────


def _ignore(*args: Any, **kwargs: Any) -> None:
    return None


class HabitProgressController:
    def __init__(
        self,
        api: Any,
        on_session_expired: Callable[[AuthError], Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.api = api
        self.on_session_expired = on_session_expired or _ignore
        self.clock = clock or now_local
        self.state = HabitsState(month=month_start(self.clock()))

    @property
    def habits(self) -> tuple[Habit, ...]:
        return self.state.habits

    @property
    def month(self) -> date:
        return self.state.month or month_start(self.clock())

    def dispatch(self, event: Event) -> list[Effect]:
        self.state, effects = reduce(self.state, event)
        return effects

    def _surface(self, effects: list[Effect]) -> CareloopError:
        """Forward session expiry if needed and return the error to raise."""
        effect = effects[0]
        if isinstance(effect, ForwardSessionExpiry):
            self.on_session_expired(effect.error)
        return effect.error

    def _failure(self, error: CareloopError, action: str) -> CareloopError:
        if isinstance(error, AuthError):
            return error
        return HabitRequestFailed(action)

    # ── Queries ───────────────────────────────────────────────

    def grid(self) -> list[CalendarDay]:
        return build_month_grid(self.month)

    def stats(self, day: date | datetime | str | None = None) -> HabitStats:
        if day is None:
            day = self.clock().date()
        return habit_stats(self.state.habits, day)

    # ── Loading ───────────────────────────────────────────────

    async def load(self, month: date | datetime | str | None = None) -> bool:
        """Replace the habit list for *month*. Returns False if discarded."""
        target = month_start(month) if month is not None else self.month
        seq = self.state.mutation_seq
        try:
            habits = await self.api.list_habits(month_param(target))
        except CareloopError as e:
            logger.error("Error loading habits: %s", e)
            raise self._surface(self.dispatch(RequestFailed(self._failure(e, "load the habits")))) from e
        before = self.state
        self.dispatch(HabitsLoaded(tuple(habits), target, seq))
        return self.state is not before

    async def change_month(self, delta: int) -> bool:
        return await self.load(shift_month(self.month, delta))

    # ── Progress ──────────────────────────────────────────────

    async def toggle(self, habit_id: str, day: date | datetime | str) -> bool:
        """Toggle *day* for *habit_id*; returns the server's isChecked."""
        key = day_key(day)
        effects = self.dispatch(ToggleRequested(habit_id, key))
        if not any(isinstance(e, CallToggle) for e in effects):
            raise self._surface(effects)

        try:
            result = await self.api.update_progress(habit_id, key)
        except CareloopError as e:
            logger.error("Error updating progress for %s on %s: %s", habit_id, key, e)
            error = e if isinstance(e, AuthError) else ToggleFailed(habit_id, key)
            raise self._surface(self.dispatch(ToggleRejected(habit_id, error))) from e
        except BaseException:
            # cancelled or unexpected: release the flag, leave progress untouched
            self.dispatch(ToggleRejected(habit_id, ToggleFailed(habit_id, key)))
            raise

        self.dispatch(ToggleConfirmed(habit_id, key, result.is_checked))
        logger.info("Progress updated: habit=%s date=%s isChecked=%s", habit_id, key, result.is_checked)
        return result.is_checked

    # ── CRUD ──────────────────────────────────────────────────

    async def create_habit(self, title: str, category: str = "personal") -> Habit:
        data = {"title": (title or "").strip(), "category": category}
        errors = validate_habit(data)
        if errors:
            raise InvalidHabit(errors)
        try:
            habit = await self.api.create_habit(data)
        except CareloopError as e:
            logger.error("Error creating habit: %s", e)
            raise self._surface(self.dispatch(RequestFailed(self._failure(e, "create the habit")))) from e
        self.dispatch(HabitSaved(habit))
        logger.info("Habit created: %s", habit.id)
        return habit

    async def update_habit(self, habit_id: str, title: str, category: str = "personal") -> Habit:
        if self.state.find(habit_id) is None:
            raise HabitNotFound(habit_id)
        data = {"title": (title or "").strip(), "category": category}
        errors = validate_habit(data)
        if errors:
            raise InvalidHabit(errors)
        try:
            habit = await self.api.update_habit(habit_id, data)
        except CareloopError as e:
            logger.error("Error updating habit %s: %s", habit_id, e)
            raise self._surface(self.dispatch(RequestFailed(self._failure(e, "update the habit")))) from e
        self.dispatch(HabitSaved(habit))
        logger.info("Habit updated: %s", habit.id)
        return habit

    async def delete_habit(self, habit_id: str) -> None:
        if self.state.find(habit_id) is None:
            raise HabitNotFound(habit_id)
        try:
            await self.api.delete_habit(habit_id)
        except CareloopError as e:
            logger.error("Error deleting habit %s: %s", habit_id, e)
            raise self._surface(self.dispatch(RequestFailed(self._failure(e, "delete the habit")))) from e
        self.dispatch(HabitRemoved(habit_id))
        logger.info("Habit deleted: %s", habit_id)
