"""Error taxonomy for careloop.

Four families:

* transport/API errors raised by the API client (ApiError, NetworkError,
  AuthError for an expired session);
* local precondition failures that never reach the network
  (InvalidTransition, StartInProgress, ConcurrentToggle, InvalidHabit,
  HabitNotFound);
* AlreadyStarted, a conflict carrying the server's real start date;
* generic retry-safe failures (StartFailed, ToggleFailed,
  HabitRequestFailed).
"""

from __future__ import annotations

from typing import Any


class CareloopError(Exception):
    """Base class for every error the core raises."""

    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


# ── Transport ─────────────────────────────────────────────────

HTTP_ERROR_MESSAGES = {
    400: "Invalid request",
    401: "Not authorized",
    403: "Access denied",
    404: "Resource not found",
    408: "Connection timed out",
    500: "Internal server error",
    502: "Bad gateway",
    503: "Service unavailable",
    504: "Gateway timeout",
}


class ApiError(CareloopError):
    retryable = True

    def __init__(self, message: str, status: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.data = data if data is not None else {}


class NetworkError(CareloopError):
    retryable = True

    def __init__(self, message: str = "Could not reach the server. Please try again later.") -> None:
        super().__init__(message)


class AuthError(CareloopError):
    """The session is missing or expired. Forwarded, never handled locally."""

    def __init__(self, message: str = "Session expired") -> None:
        super().__init__(message)


# ── Local preconditions ───────────────────────────────────────


class LocalPreconditionError(CareloopError):
    pass


class InvalidTransition(LocalPreconditionError):
    def __init__(self, message: str, status: str = "") -> None:
        super().__init__(message)
        self.status = status


class StartInProgress(LocalPreconditionError):
    def __init__(self, assignment_id: str) -> None:
        super().__init__("This protocol is already being started.")
        self.assignment_id = assignment_id


class ConcurrentToggle(LocalPreconditionError):
    def __init__(self, habit_id: str) -> None:
        super().__init__("This habit is still being updated. Please wait.")
        self.habit_id = habit_id


class InvalidHabit(LocalPreconditionError):
    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class HabitNotFound(LocalPreconditionError):
    def __init__(self, habit_id: str) -> None:
        super().__init__(f"Habit not found: {habit_id}")
        self.habit_id = habit_id


# ── Conflict ──────────────────────────────────────────────────


class AlreadyStarted(CareloopError):
    def __init__(self, start_date: str) -> None:
        shown = start_date[:10] if len(start_date) >= 10 else start_date
        super().__init__(f"This protocol was already started on {shown}.")
        self.start_date = start_date


# ── Generic, retry-safe ───────────────────────────────────────


class StartFailed(CareloopError):
    retryable = True

    def __init__(self, message: str = "") -> None:
        super().__init__(
            message
            or "Could not start the protocol. Please try again later or contact support if the issue persists."
        )


class ToggleFailed(CareloopError):
    retryable = True

    def __init__(self, habit_id: str, date: str) -> None:
        super().__init__("Could not update the progress. Please try again.")
        self.habit_id = habit_id
        self.date = date


class HabitRequestFailed(CareloopError):
    retryable = True

    def __init__(self, action: str) -> None:
        super().__init__(f"Could not {action}. Please try again.")
        self.action = action
