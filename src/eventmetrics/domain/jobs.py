"""Job lifecycle rules.

Only four statuses are persisted. A finished job is deleted, so
:attr:`JobState.COMPLETED` is inferred from the absence of a job row.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from ..exceptions import SchedulerError
from .models import JobStatus

DEFAULT_IDLE_WINDOW = timedelta(hours=1)
DEFAULT_REMOVAL_AGE = timedelta(days=1)

BUSY_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.STARTED})
FAILED_STATUSES = frozenset({JobStatus.FAILED_TIMEOUT, JobStatus.FAILED_UNKNOWN})

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.STARTED, JobStatus.FAILED_TIMEOUT}),
    JobStatus.STARTED: frozenset({JobStatus.FAILED_TIMEOUT, JobStatus.FAILED_UNKNOWN}),
    JobStatus.FAILED_TIMEOUT: frozenset({JobStatus.QUEUED, JobStatus.STARTED}),
    JobStatus.FAILED_UNKNOWN: frozenset({JobStatus.QUEUED, JobStatus.STARTED}),
}


class JobState(str, Enum):
    """Externally visible job state, as reported to pollers."""

    QUEUED = "queued"
    STARTED = "started"
    FAILED_TIMEOUT = "failed-timeout"
    FAILED_UNKNOWN = "failed-unknown"
    COMPLETED = "complete"

    @classmethod
    def from_status(cls, status: JobStatus | None) -> "JobState":
        if status is None:
            return cls.COMPLETED
        return _STATE_BY_STATUS[status]

    @property
    def is_busy(self) -> bool:
        return self in (JobState.QUEUED, JobState.STARTED)

    @property
    def has_failed(self) -> bool:
        return self in (JobState.FAILED_TIMEOUT, JobState.FAILED_UNKNOWN)


_STATE_BY_STATUS = {
    JobStatus.QUEUED: JobState.QUEUED,
    JobStatus.STARTED: JobState.STARTED,
    JobStatus.FAILED_TIMEOUT: JobState.FAILED_TIMEOUT,
    JobStatus.FAILED_UNKNOWN: JobState.FAILED_UNKNOWN,
}


class InvalidJobTransitionError(SchedulerError):
    """Raised when a job is moved between incompatible statuses."""

    def __init__(self, current: JobStatus, target: JobStatus) -> None:
        super().__init__(f"cannot move job from {current.name} to {target.name}")
        self.current = current
        self.target = target


def ensure_transition(current: JobStatus, target: JobStatus) -> None:
    """Validate ``current -> target`` against the job state machine."""

    if target not in _ALLOWED_TRANSITIONS[current]:
        raise InvalidJobTransitionError(current, target)


@dataclass(slots=True, frozen=True)
class StaleVerdict:
    """Outcome of the staleness sweep for a single job."""

    mark_timed_out: bool
    remove: bool

    @property
    def is_stale(self) -> bool:
        return self.mark_timed_out or self.remove


NOT_STALE = StaleVerdict(mark_timed_out=False, remove=False)


def is_stale(submitted: datetime, *, now: datetime, idle_window: timedelta = DEFAULT_IDLE_WINDOW) -> bool:
    return submitted <= now - idle_window


def judge_stale_job(
    status: JobStatus,
    submitted: datetime,
    *,
    now: datetime,
    idle_window: timedelta = DEFAULT_IDLE_WINDOW,
    removal_age: timedelta = DEFAULT_REMOVAL_AGE,
) -> StaleVerdict:
    """Decide what the sweep does with a job submitted at ``submitted``.

    Busy jobs idle past ``idle_window`` are marked timed out; jobs older than
    ``removal_age`` are removed whatever their status.
    """

    if not is_stale(submitted, now=now, idle_window=idle_window):
        return NOT_STALE
    return StaleVerdict(
        mark_timed_out=status in BUSY_STATUSES,
        remove=submitted <= now - removal_age,
    )


__all__ = [
    "BUSY_STATUSES",
    "FAILED_STATUSES",
    "DEFAULT_IDLE_WINDOW",
    "DEFAULT_REMOVAL_AGE",
    "JobState",
    "InvalidJobTransitionError",
    "StaleVerdict",
    "NOT_STALE",
    "ensure_transition",
    "is_stale",
    "judge_stale_job",
]
