"""Shared test fixtures for careloop tests."""

from __future__ import annotations

import copy
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest
import yaml

from careloop.api import ApiClient, Session
from careloop.config import Settings

NOW = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


def make_prescription(
    id: str = "rx-1",
    status: str = "PRESCRIBED",
    available_from: str | None = None,
    actual_start_date: str | None = None,
    name: str = "Sleep reset",
) -> dict[str, Any]:
    return {
        "id": id,
        "protocol_id": "p-" + id,
        "status": status,
        "planned_start_date": "2024-01-15",
        "planned_end_date": "2024-02-12",
        "actual_start_date": actual_start_date,
        "available_from": available_from,
        "current_day": None,
        "adherence_rate": None,
        "protocol": {
            "id": "p-" + id,
            "name": name,
            "description": "Four weeks of sleep hygiene",
            "duration": 28,
            "doctor": {"id": "d-1", "name": "Dr. Reyes"},
        },
    }


def make_habit(id: str = "h-1", title: str = "Drink water", category: str = "health", progress=None) -> dict[str, Any]:
    return {
        "id": id,
        "title": title,
        "category": category,
        "progress": [{"date": d, "isChecked": c} for d, c in (progress or [])],
    }


class FakeBackend:
    """In-memory patient API served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.prescriptions: list[dict[str, Any]] = []
        self.habits: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.failures: dict[tuple[str, str], httpx.Response] = {}
        self.start_date = "2024-01-15T09:00:00Z"
        self._next_id = 1

    def fail(self, method: str, path: str, status_code: int, body: Any = None) -> None:
        """Answer the next ``method path`` call with an error response."""
        if body is None:
            self.failures[(method, path)] = httpx.Response(status_code, text="upstream broke")
        else:
            self.failures[(method, path)] = httpx.Response(status_code, json=body)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def _find_habit(self, habit_id: str) -> dict[str, Any] | None:
        for h in self.habits:
            if h["id"] == habit_id:
                return h
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path
        failure = self.failures.pop((method, path), None)
        if failure is not None:
            return failure

        parts = path.strip("/").split("/")
        body = json.loads(request.content) if request.content else {}

        if path == "/api/v2/patients/prescriptions" and method == "GET":
            return httpx.Response(200, json={"success": True, "prescriptions": copy.deepcopy(self.prescriptions)})

        if path.startswith("/api/v2/patients/prescriptions/") and parts[-1] == "start" and method == "POST":
            for p in self.prescriptions:
                if p["id"] == parts[-2]:
                    p["status"] = "ACTIVE"
                    p["actual_start_date"] = self.start_date
                    return httpx.Response(200, json={"success": True, "prescription": copy.deepcopy(p)})
            return httpx.Response(404, json={"success": False, "message": "Prescription not found"})

        if path == "/api/mobile/habits/progress" and method == "POST":
            habit = self._find_habit(body["habitId"])
            if habit is None:
                return httpx.Response(404, json={"success": False, "error": "Habit not found"})
            for entry in habit["progress"]:
                if entry["date"] == body["date"]:
                    entry["isChecked"] = not entry["isChecked"]
                    return httpx.Response(200, json={"success": True, "isChecked": entry["isChecked"], "isUpdate": True})
            habit["progress"].append({"date": body["date"], "isChecked": True})
            return httpx.Response(200, json={"success": True, "isChecked": True, "isUpdate": False})

        if path == "/api/mobile/habits" and method == "GET":
            return httpx.Response(200, json={"success": True, "habits": copy.deepcopy(self.habits), "total": len(self.habits)})

        if path == "/api/mobile/habits" and method == "POST":
            habit = {"id": f"new-{self._next_id}", "progress": [], **body}
            self._next_id += 1
            self.habits.append(habit)
            return httpx.Response(201, json={"success": True, "habit": copy.deepcopy(habit)})

        if path.startswith("/api/mobile/habits/"):
            habit = self._find_habit(parts[-1])
            if habit is None:
                return httpx.Response(404, json={"success": False, "error": "Habit not found"})
            if method == "PUT":
                habit.update(body)
                return httpx.Response(200, json={"success": True, "habit": copy.deepcopy(habit)})
            if method == "DELETE":
                self.habits.remove(habit)
                return httpx.Response(200, json={"success": True})

        return httpx.Response(404, json={"message": "No route"})


@pytest.fixture
def settings() -> Settings:
    return Settings(api_url="http://careloop.test", timezone="UTC", request_timeout=5.0)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def session() -> Session:
    return Session(token="test-token")


@pytest.fixture
def api(backend: FakeBackend, session: Session, settings: Settings) -> ApiClient:
    return ApiClient(session, settings, transport=httpx.MockTransport(backend.handler))


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def prescription():
    return make_prescription


@pytest.fixture
def habit_payload():
    return make_habit


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A settings file wired in through CARELOOP_CONFIG."""
    path = tmp_path / "config.yaml"
    data = {
        "api_url": "https://api.careloop.test/",
        "timezone": "America/New_York",
        "request_timeout": 20,
        "log_level": "debug",
    }
    path.write_text(yaml.dump(data, default_flow_style=False), encoding="utf-8")
    monkeypatch.setenv("CARELOOP_CONFIG", str(path))
    monkeypatch.delenv("CARELOOP_API_URL", raising=False)
    monkeypatch.delenv("CARELOOP_LOG_LEVEL", raising=False)
    return path
