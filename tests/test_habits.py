"""Tests for careloop/habits.py: toggle serialization, CRUD, refresh race."""

import asyncio
from datetime import date

import pytest

from careloop.api import HABITS_PATH, PROGRESS_PATH
from careloop.effects import CallToggle
from careloop.errors import (
    AuthError,
    ConcurrentToggle,
    HabitNotFound,
    HabitRequestFailed,
    InvalidHabit,
    ToggleFailed,
)
from careloop.habits import (
    HabitProgressController,
    HabitsLoaded,
    HabitsState,
    ToggleConfirmed,
    ToggleRequested,
    category_display,
    reduce,
    validate_habit,
)
from careloop.models import Habit, ProgressEntry, ToggleResult
from careloop.progress import is_completed_on, progress_map


def _habit(id="h-1", *entries) -> Habit:
    return Habit(id=id, title="Walk", progress=tuple(ProgressEntry(d, c) for d, c in entries))


class ScriptedApi:
    """Progress answers come from ``answers``; list and toggle calls may wait on their gates."""

    def __init__(self, habits, answers=()):
        self.habits = list(habits)
        self.answers = list(answers)
        self.toggle_gate: asyncio.Event | None = None
        self.list_gate: asyncio.Event | None = None
        self.toggles: list[tuple[str, str]] = []

    async def list_habits(self, month=None):
        snapshot = list(self.habits)
        if self.list_gate is not None:
            await self.list_gate.wait()
        return snapshot

    async def update_progress(self, habit_id, day):
        self.toggles.append((habit_id, day))
        if self.toggle_gate is not None:
            await self.toggle_gate.wait()
        return ToggleResult(is_checked=self.answers.pop(0), is_update=True)


# ── Pure helpers ──────────────────────────────────────────────


def test_validate_habit():
    assert validate_habit({"title": "Walk", "category": "health"}) == []
    assert validate_habit({"title": "   "}) == ["Please enter a title for the habit."]
    assert any("category" in e for e in validate_habit({"title": "Walk", "category": "hobby"}))


def test_category_display():
    assert category_display("health") == ("Health", "#4ade80")
    assert category_display("work") == ("Work", "#f59e0b")
    assert category_display("mystery") == ("Personal", "#1697F5")


# ── Reducer ───────────────────────────────────────────────────


def test_reduce_toggle_sets_flag_per_habit():
    state = HabitsState(habits=(_habit(),))
    state, effects = reduce(state, ToggleRequested("h-1", "2024-01-14"))
    assert effects == [CallToggle("h-1", "2024-01-14")]
    assert state.updating == frozenset({"h-1"})

    _, effects = reduce(state, ToggleRequested("h-1", "2024-01-15"))
    assert isinstance(effects[0].error, ConcurrentToggle)


def test_reduce_toggle_unknown_habit():
    _, effects = reduce(HabitsState(), ToggleRequested("nope", "2024-01-14"))
    assert isinstance(effects[0].error, HabitNotFound)


def test_reduce_confirm_merges_server_value():
    state = HabitsState(habits=(_habit("h-1", ("2024-01-14", True)),), updating=frozenset({"h-1"}))
    state, _ = reduce(state, ToggleConfirmed("h-1", "2024-01-14", True))
    # server said True again: no local flip
    assert is_completed_on(state.habits[0], "2024-01-14") is True
    assert state.updating == frozenset()
    assert state.mutation_seq == 1


def test_reduce_stale_load_discarded():
    state = HabitsState(habits=(_habit(),), month=date(2024, 1, 1), mutation_seq=3)
    new_state, _ = reduce(state, HabitsLoaded((), date(2024, 1, 1), 2))
    assert new_state is state


# ── Controller ────────────────────────────────────────────────


@pytest.fixture
def expired():
    return []


@pytest.fixture
def controller(api, clock, expired):
    return HabitProgressController(api, on_session_expired=expired.append, clock=clock)


def test_load_current_month(controller, backend, habit_payload):
    backend.habits = [habit_payload(progress=[("2024-01-14", True)])]
    assert asyncio.run(controller.load()) is True
    assert controller.month == date(2024, 1, 1)
    assert controller.habits[0].id == "h-1"
    assert backend.requests[-1].url.params["month"] == "2024-01-01"
    assert len(controller.grid()) == 42


def test_change_month(controller, backend):
    asyncio.run(controller.change_month(-1))
    assert controller.month == date(2023, 12, 1)
    assert backend.requests[-1].url.params["month"] == "2023-12-01"


def test_toggle_takes_server_value(controller, backend, habit_payload):
    backend.habits = [habit_payload(progress=[("2024-01-14", True)])]
    asyncio.run(controller.load())
    assert asyncio.run(controller.toggle("h-1", "2024-01-14")) is False
    assert progress_map(controller.habits[0]) == {"2024-01-14": False}
    assert asyncio.run(controller.toggle("h-1", date(2024, 1, 15))) is True
    assert progress_map(controller.habits[0]) == {"2024-01-14": False, "2024-01-15": True}
    assert controller.state.updating == frozenset()


def test_double_toggle_follows_last_server_response(clock):
    # the server answers True twice; local state must not flip back
    api = ScriptedApi([_habit("h-1")], answers=[True, True])
    controller = HabitProgressController(api, clock=clock)
    asyncio.run(controller.load())
    asyncio.run(controller.toggle("h-1", "2024-01-14"))
    asyncio.run(controller.toggle("h-1", "2024-01-14"))
    assert progress_map(controller.habits[0]) == {"2024-01-14": True}
    assert len(controller.habits[0].progress) == 1


def test_concurrent_toggle_same_habit_different_dates(clock):
    api = ScriptedApi([_habit("h-1"), _habit("h-2")], answers=[True, True])
    controller = HabitProgressController(api, clock=clock)
    asyncio.run(controller.load())

    async def scenario():
        api.toggle_gate = asyncio.Event()
        first = asyncio.create_task(controller.toggle("h-1", "2024-01-14"))
        await asyncio.sleep(0)
        with pytest.raises(ConcurrentToggle):
            await controller.toggle("h-1", "2024-01-15")
        other = asyncio.create_task(controller.toggle("h-2", "2024-01-14"))
        await asyncio.sleep(0)
        assert controller.state.updating == frozenset({"h-1", "h-2"})
        api.toggle_gate.set()
        await asyncio.gather(first, other)

    asyncio.run(scenario())
    assert api.toggles == [("h-1", "2024-01-14"), ("h-2", "2024-01-14")]
    assert controller.state.updating == frozenset()


def test_failed_toggle_leaves_progress_untouched(controller, backend, habit_payload):
    backend.habits = [habit_payload(progress=[("2024-01-14", True)])]
    asyncio.run(controller.load())
    before = controller.habits
    backend.fail("POST", PROGRESS_PATH, 500, {"message": "Boom"})
    with pytest.raises(ToggleFailed) as exc:
        asyncio.run(controller.toggle("h-1", "2024-01-14"))
    assert exc.value.retryable is True
    assert controller.habits == before
    assert controller.state.updating == frozenset()


def test_toggle_session_expiry_forwarded(controller, backend, habit_payload, expired):
    backend.habits = [habit_payload()]
    asyncio.run(controller.load())
    backend.fail("POST", PROGRESS_PATH, 401, {"message": "Session expired"})
    with pytest.raises(AuthError):
        asyncio.run(controller.toggle("h-1", "2024-01-14"))
    assert len(expired) == 1
    assert controller.state.updating == frozenset()


def test_cancelled_toggle_releases_flag(clock):
    api = ScriptedApi([_habit("h-1")], answers=[True])
    controller = HabitProgressController(api, clock=clock)
    asyncio.run(controller.load())

    async def scenario():
        api.toggle_gate = asyncio.Event()
        task = asyncio.create_task(controller.toggle("h-1", "2024-01-14"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert controller.state.updating == frozenset()
    assert controller.habits[0].progress == ()


def test_load_discarded_while_toggle_in_flight(clock):
    api = ScriptedApi([_habit("h-1")], answers=[True])
    controller = HabitProgressController(api, clock=clock)
    asyncio.run(controller.load())

    async def scenario():
        api.toggle_gate = asyncio.Event()
        toggle = asyncio.create_task(controller.toggle("h-1", "2024-01-14"))
        await asyncio.sleep(0)
        applied = await controller.load()
        api.toggle_gate.set()
        await toggle
        return applied

    assert asyncio.run(scenario()) is False
    assert progress_map(controller.habits[0]) == {"2024-01-14": True}


def test_load_discarded_after_toggle_completed(clock):
    api = ScriptedApi([_habit("h-1")], answers=[True])
    controller = HabitProgressController(api, clock=clock)
    asyncio.run(controller.load())

    async def scenario():
        api.list_gate = asyncio.Event()
        load = asyncio.create_task(controller.load())
        await asyncio.sleep(0)
        await controller.toggle("h-1", "2024-01-14")
        api.list_gate.set()
        return await load

    assert asyncio.run(scenario()) is False
    assert progress_map(controller.habits[0]) == {"2024-01-14": True}


def test_stats_for_day(controller, backend, habit_payload):
    backend.habits = [
        habit_payload("a", progress=[("2024-01-15", True)]),
        habit_payload("b", progress=[("2024-01-15", True)]),
        habit_payload("c"),
    ]
    asyncio.run(controller.load())
    assert controller.stats().completion_rate == 67
    assert controller.stats("2024-01-14").completed == 0


def test_create_habit(controller, backend):
    habit = asyncio.run(controller.create_habit("  Stretch  ", "work"))
    assert habit.title == "Stretch"
    assert controller.habits == (habit,)


def test_create_habit_validation(controller, backend):
    with pytest.raises(InvalidHabit) as exc:
        asyncio.run(controller.create_habit("", "hobby"))
    assert len(exc.value.errors) == 2
    assert backend.requests == []


def test_create_habit_remote_failure(controller, backend):
    backend.fail("POST", HABITS_PATH, 500, {"message": "Boom"})
    with pytest.raises(HabitRequestFailed, match="create the habit"):
        asyncio.run(controller.create_habit("Stretch"))
    assert controller.habits == ()


def test_update_and_delete_habit(controller, backend, habit_payload):
    backend.habits = [habit_payload()]
    asyncio.run(controller.load())
    updated = asyncio.run(controller.update_habit("h-1", "Drink more water", "health"))
    assert controller.habits[0].title == updated.title == "Drink more water"
    asyncio.run(controller.delete_habit("h-1"))
    assert controller.habits == ()


def test_update_unknown_habit(controller, backend):
    with pytest.raises(HabitNotFound):
        asyncio.run(controller.update_habit("ghost", "x"))
    with pytest.raises(HabitNotFound):
        asyncio.run(controller.delete_habit("ghost"))
    assert backend.requests == []


def test_delete_remote_failure_keeps_habit(controller, backend, habit_payload):
    backend.habits = [habit_payload()]
    asyncio.run(controller.load())
    backend.fail("DELETE", f"{HABITS_PATH}/h-1", 503, {})
    with pytest.raises(HabitRequestFailed):
        asyncio.run(controller.delete_habit("h-1"))
    assert [h.id for h in controller.habits] == ["h-1"]
