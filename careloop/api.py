"""Async HTTP client for the patient API.

Every call goes through ApiClient._request, which attaches the session's
bearer token and turns HTTP and transport failures into the typed errors
of careloop.errors. The client holds no patient data; controllers own
the in-memory state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from careloop.config import Settings, load_settings
from careloop.errors import HTTP_ERROR_MESSAGES, ApiError, AuthError, NetworkError
from careloop.models import Habit, ProtocolAssignment, ToggleResult

logger = logging.getLogger(__name__)

PRESCRIPTIONS_PATH = "/api/v2/patients/prescriptions"
HABITS_PATH = "/api/mobile/habits"
PROGRESS_PATH = "/api/mobile/habits/progress"


@dataclass
class Session:
    """Authenticated session handle injected into the client."""

    token: str | None = None
    expires_at: datetime | None = None

    def is_valid(self, now: datetime | None = None) -> bool:
        if not self.token:
            return False
        if self.expires_at is None:
            return True
        if now is None:
            now = datetime.now(timezone.utc)
        return self.expires_at > now

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}


class ApiClient:
    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if settings is None:
            settings = load_settings()
        self.session = session
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=settings.request_timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ── Transport ─────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.session.is_valid():
            logger.debug("Session invalid, refusing %s %s", method, path)
            raise AuthError("Session expired")

        logger.debug("Request %s %s", method, path)
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                params={k: v for k, v in (params or {}).items() if v is not None} or None,
                headers=self.session.auth_headers(),
            )
        except httpx.HTTPError as e:
            logger.error("Request %s %s failed: %s", method, path, e)
            raise NetworkError() from e

        data = _decode_body(response)
        logger.debug("Response %s for %s %s", response.status_code, method, path)

        if response.status_code == 401:
            logger.warning("Authentication rejected for %s %s", method, path)
            raise AuthError(str(data.get("message") or HTTP_ERROR_MESSAGES[401]))
        if response.is_error:
            message = data.get("message") or HTTP_ERROR_MESSAGES.get(
                response.status_code, "An unexpected error occurred"
            )
            logger.error("API error %s on %s %s: %s", response.status_code, method, path, message)
            raise ApiError(str(message), response.status_code, data)
        return data

    # ── Prescriptions ─────────────────────────────────────────

    async def list_prescriptions(self) -> list[ProtocolAssignment]:
        data = await self._request("GET", PRESCRIPTIONS_PATH)
        raw = data.get("prescriptions")
        if not data.get("success") or not isinstance(raw, list):
            logger.warning("Invalid prescriptions response: %s", data.get("message", "no message"))
            return []
        assignments = [ProtocolAssignment.from_dict(p) for p in raw if isinstance(p, dict)]
        logger.info("%d protocols loaded", len(assignments))
        return assignments

    async def start_prescription(self, prescription_id: str) -> dict[str, Any]:
        return await self._request("POST", f"{PRESCRIPTIONS_PATH}/{prescription_id}/start")

    # ── Habits ────────────────────────────────────────────────

    async def list_habits(self, month: str | None = None) -> list[Habit]:
        data = await self._request("GET", HABITS_PATH, params={"month": month})
        raw = data.get("habits")
        if not data.get("success") or not isinstance(raw, list):
            logger.warning("Invalid habits response")
            return []
        habits = [Habit.from_dict(h) for h in raw if isinstance(h, dict)]
        logger.info("Habits loaded: total=%s count=%d", data.get("total"), len(habits))
        return habits

    async def create_habit(self, habit_data: dict[str, Any]) -> Habit:
        data = await self._request("POST", HABITS_PATH, json=habit_data)
        return _habit_from_response(data, "Could not create the habit")

    async def update_habit(self, habit_id: str, habit_data: dict[str, Any]) -> Habit:
        data = await self._request("PUT", f"{HABITS_PATH}/{habit_id}", json=habit_data)
        return _habit_from_response(data, "Could not update the habit")

    async def delete_habit(self, habit_id: str) -> None:
        data = await self._request("DELETE", f"{HABITS_PATH}/{habit_id}")
        if not data.get("success"):
            raise ApiError(str(data.get("error") or "Could not delete the habit"), None, data)

    async def update_progress(self, habit_id: str, day: str) -> ToggleResult:
        data = await self._request("POST", PROGRESS_PATH, json={"habitId": habit_id, "date": day})
        if not data.get("success") or "isChecked" not in data:
            raise ApiError(str(data.get("error") or "Could not update the progress"), None, data)
        return ToggleResult.from_dict(data)


def _decode_body(response: httpx.Response) -> dict[str, Any]:
    """JSON object body, or {'message': text} for anything else."""
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = response.json()
        except ValueError:
            return {"message": response.text}
        return body if isinstance(body, dict) else {"data": body}
    return {"message": response.text} if response.text else {}


def _habit_from_response(data: dict[str, Any], fallback: str) -> Habit:
    habit = data.get("habit")
    if not data.get("success") or not isinstance(habit, dict):
        raise ApiError(str(data.get("error") or fallback), None, data)
    return Habit.from_dict(habit)
