"""careloop local JSON surface.

Exposes the protocol and habit controllers to a screen layer. Every
response is a projection of controller state; nothing is stored here.

Run with: uvicorn ui.app:app
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable

from fastapi import Body, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from careloop import (
    AlreadyStarted,
    ApiClient,
    AuthError,
    CareloopError,
    HabitNotFound,
    HabitProgressController,
    InvalidHabit,
    LocalPreconditionError,
    ProtocolLifecycleController,
    Session,
    build_month_grid,
    category_display,
    configure_logging,
    current_month_days,
    is_completed_on,
    load_settings,
)
from careloop.calendar_grid import parse_month


# ── Patient context ───────────────────────────────────────────


@dataclass
class PatientContext:
    """Controllers plus the navigation/session signals they emit."""

    protocols: ProtocolLifecycleController | None = None
    habits: HabitProgressController | None = None
    last_route: dict[str, Any] | None = None
    session_expired: bool = False

    def navigate(self, route: str, **params: Any) -> None:
        self.last_route = {"route": route, "params": params}

    def expire_session(self, error: AuthError) -> None:
        self.session_expired = True


def build_context(api: Any, clock: Callable[[], datetime] | None = None) -> PatientContext:
    ctx = PatientContext()
    ctx.protocols = ProtocolLifecycleController(
        api, navigate=ctx.navigate, on_session_expired=ctx.expire_session, clock=clock
    )
    ctx.habits = HabitProgressController(api, on_session_expired=ctx.expire_session, clock=clock)
    return ctx


_context: PatientContext | None = None


def get_context() -> PatientContext:
    global _context
    if _context is None:
        settings = load_settings()
        configure_logging(settings.log_level)
        session = Session(token=os.environ.get("CARELOOP_TOKEN") or None)
        _context = build_context(ApiClient(session, settings))
    return _context


# ── Auth ──────────────────────────────────────────────────────

app = FastAPI(title="careloop", version="0.1.0")

security = HTTPBasic(auto_error=False)


def get_current_user(credentials: HTTPBasicCredentials | None = Depends(security)) -> str:
    expected_username = os.environ.get("CARELOOP_USERNAME", "")
    expected_password = os.environ.get("CARELOOP_PASSWORD", "")

    if not expected_username or not expected_password:
        return "guest"

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Basic"},
        )

    correct_username = secrets.compare_digest(credentials.username.encode("utf-8"), expected_username.encode("utf-8"))
    correct_password = secrets.compare_digest(credentials.password.encode("utf-8"), expected_password.encode("utf-8"))

    if not (correct_username and correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username


# ── Error mapping ─────────────────────────────────────────────


@app.exception_handler(CareloopError)
async def careloop_error_handler(request: Request, exc: CareloopError) -> JSONResponse:
    body: dict[str, Any] = {
        "ok": False,
        "error": type(exc).__name__,
        "message": exc.message,
        "retryable": exc.retryable,
    }
    if isinstance(exc, AuthError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, HabitNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, InvalidHabit):
        code = 422
        body["errors"] = exc.errors
    elif isinstance(exc, AlreadyStarted):
        code = status.HTTP_409_CONFLICT
        body["startDate"] = exc.start_date
    elif isinstance(exc, LocalPreconditionError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return JSONResponse(status_code=code, content=body)


# ── Projections ───────────────────────────────────────────────


def _protocols_view(ctx: PatientContext) -> dict[str, Any]:
    items = []
    for a in ctx.protocols.assignments:
        d = a.to_dict()
        d["availability"] = ctx.protocols.availability(a).to_dict()
        items.append(d)
    state = ctx.protocols.state
    return {
        "protocols": items,
        "pendingConfirmation": state.pending_confirmation,
        "starting": sorted(state.starting),
        "navigation": ctx.last_route,
    }


def _habits_view(ctx: PatientContext) -> dict[str, Any]:
    habits = ctx.habits
    month_days = current_month_days(build_month_grid(habits.month))
    items = []
    for h in habits.habits:
        name, color = category_display(h.category)
        d = h.to_dict()
        d["categoryName"] = name
        d["categoryColor"] = color
        d["days"] = {day.date: is_completed_on(h, day.date) for day in month_days}
        d["updating"] = h.id in habits.state.updating
        items.append(d)
    return {
        "month": habits.month.isoformat(),
        "grid": [day.to_dict() for day in habits.grid()],
        "habits": items,
        "stats": habits.stats().to_dict(),
    }


def _find_protocol(ctx: PatientContext, assignment_id: str):
    assignment = ctx.protocols.state.find(assignment_id)
    if assignment is None:
        raise HTTPException(status_code=404, detail=f"Protocol not found: {assignment_id}")
    return assignment


# ── Endpoints ─────────────────────────────────────────────────


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"ok": "true"}


@app.get("/api/protocols")
async def api_list_protocols(
    username: str = Depends(get_current_user),
    ctx: PatientContext = Depends(get_context),
) -> dict[str, Any]:
    """Prescriptions with their availability; loads on first access."""
    if not ctx.protocols.state.loaded:
        await ctx.protocols.refresh()
    return _protocols_view(ctx)


@app.post("/api/protocols/refresh")
async def api_refresh_protocols(
    username: str = Depends(get_current_user),
    ctx: PatientContext = Depends(get_context),
) -> dict[str, Any]:
    applied = await ctx.protocols.refresh()
    return {"ok": True, "applied": applied, **_protocols_view(ctx)}


@app.post("/api/protocols/cancel")
def api_cancel_start(
    username: str = Depends(get_current_user),
    ctx: PatientContext = Depends(get_context),
) -> dict[str, Any]:
    ctx.protocols.cancel_start()
    return {"ok": True}


@app.post("/api/protocols/{assignment_id}/start")
def api_request_start(
    assignment_id: str,
    username: str = Depends(get_current_user),
    ctx: PatientContext = Depends(get_context),
) -> dict[str, Any]:
    """Check the start guard; the patient must then confirm."""
    assignment = _find_protocol(ctx, assignment_id)
    ctx.protocols.request_start(assignment)
    return {"ok": True, "pendingConfirmation": assignment_id, "protocol": assignment.protocol.name}


@app.post("/api/protocols/{assignment_id}/confirm")
async def api_confirm_start(
    assignment_id: str,
    username: str = Depends(get_current_user),
    ctx: PatientContext = Depends(get_context),
) -> dict[str, Any]:
    assignment = _find_protocol(ctx, assignment_id)
    await ctx.protocols.confirm_start(assignment)
    return {"ok": True, **_protocols_view(ctx)}


@app.get("/api/habits")
async def api_list_habits(
    month: str | None = None,
    username: str = Depends(get_current_user),
    ctx: PatientContext = Depends(get_context),
) -> dict[str, Any]:
    """Habits for a month (YYYY-MM, default current) with grid and today's stats."""
    target: date | None = None
    if month:
        target = parse_month(month)
        if target is None:
            raise HTTPException(status_code=400, detail=f"Invalid month: {month}")
    if target is not None and target != ctx.habits.month:
        if not await ctx.habits.load(target):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Month switch discarded while a habit update is in flight. Please retry.",
            )
    elif not ctx.habits.state.loaded:
        await ctx.habits.load()
    return _habits_view(ctx)


@app.post("/api/habits")
async def api_create_habit(
    payload: dict[str, Any] = Body(...),
    username: str = Depends(get_current_user),
    ctx: PatientContext = Depends(get_context),
) -> dict[str, Any]:
    habit = await ctx.habits.create_habit(str(payload.get("title", "")), str(payload.get("category", "personal")))
    return {"ok": True, "habit": habit.to_dict()}


@app.put("/api/habits/{habit_id}")
async def api_update_habit(
    habit_id: str,
    payload: dict[str, Any] = Body(...),
    username: str = Depends(get_current_user),
    ctx: PatientContext = Depends(get_context),
) -> dict[str, Any]:
    habit = await ctx.habits.update_habit(
        habit_id, str(payload.get("title", "")), str(payload.get("category", "personal"))
    )
    return {"ok": True, "habit": habit.to_dict()}


@app.delete("/api/habits/{habit_id}")
async def api_delete_habit(
    habit_id: str,
    username: str = Depends(get_current_user),
    ctx: PatientContext = Depends(get_context),
) -> dict[str, Any]:
    await ctx.habits.delete_habit(habit_id)
    return {"ok": True, "habit_id": habit_id}


@app.post("/api/habits/{habit_id}/toggle")
async def api_toggle_habit(
    habit_id: str,
    payload: dict[str, Any] = Body(...),
    username: str = Depends(get_current_user),
    ctx: PatientContext = Depends(get_context),
) -> dict[str, Any]:
    day = payload.get("date")
    if not day:
        raise HTTPException(status_code=400, detail="Missing date")
    try:
        date.fromisoformat(str(day)[:10])
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date: {day}")
    is_checked = await ctx.habits.toggle(habit_id, str(day))
    return {"ok": True, "habit_id": habit_id, "date": str(day)[:10], "isChecked": is_checked}
