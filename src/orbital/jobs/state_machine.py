from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMEOUT}
)

# running -> running is a re-attempt after a crashed worker's entry was requeued.
ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {
        JobStatus.RUNNING,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.TIMEOUT,
    },
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
    JobStatus.TIMEOUT: set(),
}


class IllegalTransitionError(ValueError):
    pass


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


def check_transition(*, current: JobStatus, to: JobStatus) -> None:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")


def allowed_sources(to: JobStatus) -> list[JobStatus]:
    """Statuses from which `to` may be entered, in declaration order."""

    return [status for status, targets in ALLOWED_TRANSITIONS.items() if to in targets]
