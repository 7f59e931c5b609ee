"""Protocol start flow: guard -> confirm -> remote start -> reload -> navigate.

The only transition this client originates is PRESCRIBED -> ACTIVE.
PAUSED, COMPLETED and ABANDONED only ever arrive from the server.

State changes are computed by reduce(state, event) -> (state, effects),
a pure function. ProtocolLifecycleController owns the current state,
dispatches events and runs the returned effects against its
collaborators (API client, navigator, session-expiry handler).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from careloop.availability import resolve, start_block_reason
from careloop.config import now_local
from careloop.effects import CallStart, Effect, ForwardSessionExpiry, Navigate, Reload, Surface
from careloop.errors import (
    AlreadyStarted,
    ApiError,
    AuthError,
    CareloopError,
    InvalidTransition,
    StartFailed,
    StartInProgress,
)
from careloop.models import ACTIVE, PRESCRIBED, Availability, ProtocolAssignment

logger = logging.getLogger(__name__)

PROTOCOL_ROUTE = "Protocol"


# ── State & events ────────────────────────────────────────────


@dataclass(frozen=True)
class LifecycleState:
    assignments: tuple[ProtocolAssignment, ...] = ()
    pending_confirmation: str | None = None
    starting: frozenset[str] = frozenset()
    mutation_seq: int = 0
    loaded: bool = False
    error: CareloopError | None = None

    def find(self, assignment_id: str) -> ProtocolAssignment | None:
        for a in self.assignments:
            if a.id == assignment_id:
                return a
        return None


@dataclass(frozen=True)
class StartRequested:
    assignment: ProtocolAssignment
    now: datetime


@dataclass(frozen=True)
class StartCancelled:
    pass


@dataclass(frozen=True)
class StartConfirmed:
    assignment: ProtocolAssignment


@dataclass(frozen=True)
class StartSucceeded:
    assignment_id: str


@dataclass(frozen=True)
class StartRejected:
    assignment_id: str
    error: CareloopError


@dataclass(frozen=True)
class ListLoaded:
    assignments: tuple[ProtocolAssignment, ...]
    seq_at_request: int
    # the reload that follows a successful start; other starts may still be in flight
    after_start: bool = False


@dataclass(frozen=True)
class ListFailed:
    error: CareloopError


Event = (
    StartRequested | StartCancelled | StartConfirmed | StartSucceeded
    | StartRejected | ListLoaded | ListFailed
)


def _fail(state: LifecycleState, error: CareloopError, **changes: Any) -> tuple[LifecycleState, list[Effect]]:
    effect: Effect = ForwardSessionExpiry(error) if isinstance(error, AuthError) else Surface(error)
    return replace(state, error=error, **changes), [effect]


def reduce(state: LifecycleState, event: Event) -> tuple[LifecycleState, list[Effect]]:
    if isinstance(event, StartRequested):
        reason = start_block_reason(event.assignment, event.now)
        if reason is not None or not resolve(event.assignment, event.now).can_start:
            return _fail(state, InvalidTransition(reason or "Protocol cannot be started.", event.assignment.status))
        return replace(state, pending_confirmation=event.assignment.id, error=None), []

    if isinstance(event, StartCancelled):
        return replace(state, pending_confirmation=None), []

    if isinstance(event, StartConfirmed):
        a = event.assignment
        if a.id in state.starting:
            return _fail(state, StartInProgress(a.id))
        if a.status != PRESCRIBED:
            if a.status == ACTIVE:
                message = "This protocol is already active."
            else:
                message = f"Protocol cannot be started in its current status: {a.status}"
            return _fail(state, InvalidTransition(message, a.status), pending_confirmation=None)
        return (
            replace(state, starting=state.starting | {a.id}, pending_confirmation=None, error=None),
            [CallStart(a.id)],
        )

    if isinstance(event, StartSucceeded):
        new_state = replace(
            state,
            starting=state.starting - {event.assignment_id},
            mutation_seq=state.mutation_seq + 1,
        )
        return new_state, [Reload(), Navigate(PROTOCOL_ROUTE, {"protocol_id": event.assignment_id})]

    if isinstance(event, StartRejected):
        return _fail(state, event.error, starting=state.starting - {event.assignment_id})

    if isinstance(event, ListLoaded):
        blocked = bool(state.starting) and not event.after_start
        if blocked or event.seq_at_request != state.mutation_seq:
            logger.warning(
                "Discarding stale protocol list (in flight: %s, seq %d -> %d)",
                sorted(state.starting), event.seq_at_request, state.mutation_seq,
            )
            return state, []
        return replace(state, assignments=tuple(event.assignments), loaded=True), []

    if isinstance(event, ListFailed):
        return _fail(state, event.error)

    raise TypeError(f"Unknown lifecycle event: {event!r}")


def classify_start_error(error: Exception) -> CareloopError:
    """Map a failed start call to AlreadyStarted, AuthError or StartFailed."""
    if isinstance(error, AuthError):
        return error
    if isinstance(error, ApiError) and error.status == 400 and isinstance(error.data, dict):
        start_date = error.data.get("actual_start_date") or error.data.get("startDate")
        if start_date:
            return AlreadyStarted(str(start_date))
    return StartFailed()


# ── Controller ────────────────────────────────────────────────


def _ignore(*args: Any, **kwargs: Any) -> None:
    return None


class ProtocolLifecycleController:
    def __init__(
        self,
        api: Any,
        navigate: Callable[..., Any] | None = None,
        on_session_expired: Callable[[AuthError], Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.api = api
        self.navigate = navigate or _ignore
        self.on_session_expired = on_session_expired or _ignore
        self.clock = clock or now_local
        self.state = LifecycleState()

    @property
    def assignments(self) -> tuple[ProtocolAssignment, ...]:
        return self.state.assignments

    def dispatch(self, event: Event) -> list[Effect]:
        self.state, effects = reduce(self.state, event)
        return effects

    def _surface(self, effects: list[Effect]) -> CareloopError:
        """Forward session expiry if needed and return the error to raise."""
        effect = effects[0]
        if isinstance(effect, ForwardSessionExpiry):
            self.on_session_expired(effect.error)
        return effect.error

    def availability(self, assignment: ProtocolAssignment) -> Availability:
        return resolve(assignment, self.clock())

    async def refresh(self) -> bool:
        """Replace the list with the server's. Returns False if discarded.

        On failure the previous list is kept and the error raised.
        """
        return await self._load(after_start=False)

    async def _load(self, after_start: bool) -> bool:
        seq = self.state.mutation_seq
        try:
            assignments = await self.api.list_prescriptions()
        except CareloopError as e:
            logger.error("Error loading protocols: %s", e)
            raise self._surface(self.dispatch(ListFailed(e))) from e
        before = self.state
        self.dispatch(ListLoaded(tuple(assignments), seq, after_start))
        return self.state is not before

    def request_start(self, assignment: ProtocolAssignment) -> None:
        effects = self.dispatch(StartRequested(assignment, self.clock()))
        if effects:
            error = self._surface(effects)
            logger.info("Start refused for %s: %s", assignment.id, error)
            raise error

    def cancel_start(self) -> None:
        self.dispatch(StartCancelled())

    async def confirm_start(self, assignment: ProtocolAssignment) -> None:
        effects = self.dispatch(StartConfirmed(assignment))
        if not any(isinstance(e, CallStart) for e in effects):
            raise self._surface(effects)

        logger.debug("Starting protocol %s (protocol %s)", assignment.id, assignment.protocol_id)
        try:
            await self.api.start_prescription(assignment.id)
        except CareloopError as e:
            logger.error("Error starting protocol %s: %s", assignment.id, e)
            error = classify_start_error(e)
            raise self._surface(self.dispatch(StartRejected(assignment.id, error))) from e
        except BaseException:
            # cancelled or unexpected: release the per-assignment guard
            self.dispatch(StartRejected(assignment.id, StartFailed()))
            raise

        logger.info("Protocol %s started", assignment.id)
        for effect in self.dispatch(StartSucceeded(assignment.id)):
            if isinstance(effect, Reload):
                try:
                    await self._load(after_start=True)
                except CareloopError as e:
                    # kept in state.error; the start itself went through
                    logger.warning("Reload after start failed: %s", e)
            elif isinstance(effect, Navigate):
                self.navigate(effect.route, **effect.params)
