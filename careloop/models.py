"""Typed dataclasses for the careloop data model.

Models are built from API payloads with from_dict and serialized with
to_dict. The API speaks snake_case for prescriptions and camelCase for
habits; to_dict always emits camelCase for the screen layer.
Unknown keys are ignored; missing keys use defaults.

Models are frozen: state changes go through dataclasses.replace() or the
helpers in careloop.progress, never through in-place mutation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


# ── Statuses & categories ─────────────────────────────────────

PRESCRIBED = "PRESCRIBED"
ACTIVE = "ACTIVE"
PAUSED = "PAUSED"
COMPLETED = "COMPLETED"
ABANDONED = "ABANDONED"

VALID_STATUSES = {PRESCRIBED, ACTIVE, PAUSED, COMPLETED, ABANDONED}
STARTED_STATUSES = {ACTIVE, PAUSED, COMPLETED, ABANDONED}

VALID_CATEGORIES = ("personal", "health", "work")


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


# ── Protocols ─────────────────────────────────────────────────


@dataclass(frozen=True)
class Doctor:
    id: str = ""
    name: str = ""

    @classmethod
    def from_dict(cls, d: Any) -> Doctor | None:
        if not d or not isinstance(d, dict):
            return None
        return cls(id=str(d.get("id", "")), name=str(d.get("name", "")))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class ProtocolInfo:
    """The protocol definition a prescription points at."""

    id: str = ""
    name: str = ""
    description: str = ""
    duration: int | None = None  # days
    cover_image: str | None = None
    doctor: Doctor | None = None
    available_from: str | None = None

    @classmethod
    def from_dict(cls, d: Any, protocol_id: str = "") -> ProtocolInfo:
        if not d or not isinstance(d, dict):
            return cls(id=protocol_id)
        duration = d.get("duration")
        return cls(
            id=str(d.get("id", protocol_id) or protocol_id),
            name=str(d.get("name", "")),
            description=str(d.get("description", "") or ""),
            duration=int(duration) if duration is not None else None,
            cover_image=_opt_str(d.get("cover_image", d.get("coverImage"))),
            doctor=Doctor.from_dict(d.get("doctor")),
            available_from=_opt_str(d.get("available_from", d.get("availableFrom"))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "duration": self.duration,
            "coverImage": self.cover_image,
            "doctor": self.doctor.to_dict() if self.doctor else None,
            "availableFrom": self.available_from,
        }


@dataclass(frozen=True)
class ProtocolAssignment:
    """One patient-protocol pairing (a prescription)."""

    id: str = ""
    protocol_id: str = ""
    protocol: ProtocolInfo = field(default_factory=ProtocolInfo)
    status: str = PRESCRIBED
    planned_start_date: str | None = None
    planned_end_date: str | None = None
    actual_start_date: str | None = None
    actual_end_date: str | None = None
    available_from: str | None = None
    current_day: int | None = None
    adherence_rate: float | None = None
    progress: Any = None  # server-computed, passed through untouched
    paused_at: str | None = None
    pause_reason: str | None = None
    abandoned_at: str | None = None
    abandon_reason: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ProtocolAssignment:
        if not d or not isinstance(d, dict):
            return cls()
        protocol_id = str(d.get("protocol_id", d.get("protocolId", "")) or "")
        protocol = ProtocolInfo.from_dict(d.get("protocol"), protocol_id)
        available_from = _opt_str(d.get("available_from", d.get("availableFrom")))
        if available_from is None:
            available_from = protocol.available_from
        current_day = d.get("current_day", d.get("currentDay"))
        adherence = d.get("adherence_rate", d.get("adherenceRate"))
        return cls(
            id=str(d.get("id", "")),
            protocol_id=protocol_id or protocol.id,
            protocol=protocol,
            status=str(d.get("status", PRESCRIBED) or "").upper(),
            planned_start_date=_opt_str(d.get("planned_start_date", d.get("plannedStartDate"))),
            planned_end_date=_opt_str(d.get("planned_end_date", d.get("plannedEndDate"))),
            actual_start_date=_opt_str(d.get("actual_start_date", d.get("actualStartDate"))),
            actual_end_date=_opt_str(d.get("actual_end_date", d.get("actualEndDate"))),
            available_from=available_from,
            current_day=int(current_day) if current_day is not None else None,
            adherence_rate=float(adherence) if adherence is not None else None,
            progress=d.get("progress"),
            paused_at=_opt_str(d.get("paused_at", d.get("pausedAt"))),
            pause_reason=_opt_str(d.get("pause_reason", d.get("pauseReason"))),
            abandoned_at=_opt_str(d.get("abandoned_at", d.get("abandonedAt"))),
            abandon_reason=_opt_str(d.get("abandon_reason", d.get("abandonReason"))),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "protocolId": self.protocol_id,
            "protocol": self.protocol.to_dict(),
            "status": self.status,
            "plannedStartDate": self.planned_start_date,
            "plannedEndDate": self.planned_end_date,
            "actualStartDate": self.actual_start_date,
            "availableFrom": self.available_from,
            "currentDay": self.current_day,
            "adherenceRate": self.adherence_rate,
            "progress": self.progress,
        }
        if self.actual_end_date:
            d["actualEndDate"] = self.actual_end_date
        if self.paused_at:
            d["pausedAt"] = self.paused_at
            d["pauseReason"] = self.pause_reason
        if self.abandoned_at:
            d["abandonedAt"] = self.abandoned_at
            d["abandonReason"] = self.abandon_reason
        return d


@dataclass(frozen=True)
class Availability:
    can_start: bool = False
    is_active: bool = False
    display_status: str = "Unknown"
    display_color: str = "#6B7280"

    def to_dict(self) -> dict[str, Any]:
        return {
            "canStart": self.can_start,
            "isActive": self.is_active,
            "displayStatus": self.display_status,
            "displayColor": self.display_color,
        }


# ── Habits ────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProgressEntry:
    date: str = ""  # YYYY-MM-DD
    is_checked: bool = False

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ProgressEntry:
        return cls(
            date=str(d.get("date", ""))[:10],
            is_checked=bool(d.get("isChecked", d.get("is_checked", False))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "isChecked": self.is_checked}


@dataclass(frozen=True)
class Habit:
    id: str = ""
    title: str = ""
    category: str = "personal"
    progress: tuple[ProgressEntry, ...] = ()

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Habit:
        if not d or not isinstance(d, dict):
            return cls()
        # Collapse duplicate dates from the server, last one wins.
        by_date: dict[str, ProgressEntry] = {}
        for raw in d.get("progress") or []:
            if isinstance(raw, dict):
                entry = ProgressEntry.from_dict(raw)
                by_date[entry.date] = entry
        return cls(
            id=str(d.get("id", "")),
            title=str(d.get("title", "")),
            category=str(d.get("category", "personal") or "personal"),
            progress=tuple(by_date.values()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "progress": [p.to_dict() for p in self.progress],
        }


@dataclass(frozen=True)
class ToggleResult:
    """Server answer to a progress toggle."""

    is_checked: bool = False
    is_update: bool = False

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ToggleResult:
        return cls(
            is_checked=bool(d.get("isChecked", False)),
            is_update=bool(d.get("isUpdate", False)),
        )


@dataclass(frozen=True)
class HabitStats:
    total: int = 0
    completed: int = 0
    completion_rate: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "completionRate": self.completion_rate,
        }


# ── Calendar ──────────────────────────────────────────────────


@dataclass(frozen=True)
class CalendarDay:
    date: str = ""  # YYYY-MM-DD
    is_current_month: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "isCurrentMonth": self.is_current_month}
