"""Side effects emitted by the controller reducers.

Reducers never perform I/O; they return a list of these values and the
owning controller executes them in order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from careloop.errors import CareloopError


@dataclass(frozen=True)
class CallStart:
    assignment_id: str


@dataclass(frozen=True)
class CallToggle:
    habit_id: str
    date: str


@dataclass(frozen=True)
class Reload:
    pass


@dataclass(frozen=True)
class Navigate:
    route: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Surface:
    """Show an error to the patient."""

    error: CareloopError


@dataclass(frozen=True)
class ForwardSessionExpiry:
    error: CareloopError


Effect = CallStart | CallToggle | Reload | Navigate | Surface | ForwardSessionExpiry
