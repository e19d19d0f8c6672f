"""Generation status state machine.

::

    pending ──► running ──► completed
       │           │
       └───────────┴──────► failed

``pending -> failed`` is the pre-flight path: a job whose parameters can
never satisfy its provider is failed before it is ever shown as running.
``completed`` and ``failed`` are terminal.
"""
from __future__ import annotations

from enum import Enum


class GenerationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES: frozenset[GenerationStatus] = frozenset(
    {GenerationStatus.COMPLETED, GenerationStatus.FAILED}
)

ACTIVE_STATUSES: frozenset[GenerationStatus] = frozenset(
    {GenerationStatus.PENDING, GenerationStatus.RUNNING}
)

# target -> statuses it may be entered from
ALLOWED_SOURCES: dict[GenerationStatus, frozenset[GenerationStatus]] = {
    GenerationStatus.PENDING: frozenset(),
    GenerationStatus.RUNNING: frozenset({GenerationStatus.PENDING}),
    GenerationStatus.COMPLETED: frozenset({GenerationStatus.RUNNING}),
    GenerationStatus.FAILED: frozenset({GenerationStatus.PENDING, GenerationStatus.RUNNING}),
}


class InvalidTransitionError(Exception):
    """Raised when a generation is asked to move along an edge that does not exist."""

    def __init__(self, generation_id: str, current: str | None, target: str):
        self.generation_id = generation_id
        self.current = current
        self.target = target
        super().__init__(
            f"Generation {generation_id[:8]} cannot move from "
            f"'{current}' to '{target}'"
        )


def is_terminal(status: str | GenerationStatus) -> bool:
    return GenerationStatus(status) in TERMINAL_STATUSES


def can_transition(current: str | GenerationStatus, target: str | GenerationStatus) -> bool:
    return GenerationStatus(current) in ALLOWED_SOURCES[GenerationStatus(target)]


def allowed_sources(target: str | GenerationStatus) -> list[str]:
    """Status values a row must currently hold to enter *target* (for conditional UPDATEs)."""
    return sorted(s.value for s in ALLOWED_SOURCES[GenerationStatus(target)])


def ensure_transition(generation_id: str, current: str | None, target: str | GenerationStatus) -> None:
    if current is None or not can_transition(current, target):
        raise InvalidTransitionError(generation_id, current, GenerationStatus(target).value)
