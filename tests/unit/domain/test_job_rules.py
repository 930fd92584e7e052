from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from eventmetrics.domain.jobs import (
    NOT_STALE,
    InvalidJobTransitionError,
    JobState,
    ensure_transition,
    is_stale,
    judge_stale_job,
)
from eventmetrics.domain.models import JobStatus
from eventmetrics.exceptions import SchedulerError

NOW = datetime(2026, 6, 1, 12, 0, 0)


def test_job_state_from_status() -> None:
    assert JobState.from_status(JobStatus.QUEUED) is JobState.QUEUED
    assert JobState.from_status(JobStatus.FAILED_TIMEOUT) is JobState.FAILED_TIMEOUT
    assert JobState.from_status(None) is JobState.COMPLETED
    assert JobState.COMPLETED.value == "complete"


def test_job_state_flags() -> None:
    assert JobState.STARTED.is_busy
    assert not JobState.COMPLETED.is_busy
    assert JobState.FAILED_UNKNOWN.has_failed
    assert not JobState.QUEUED.has_failed


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (JobStatus.QUEUED, JobStatus.STARTED),
        (JobStatus.STARTED, JobStatus.FAILED_TIMEOUT),
        (JobStatus.STARTED, JobStatus.FAILED_UNKNOWN),
        (JobStatus.FAILED_UNKNOWN, JobStatus.QUEUED),
        (JobStatus.FAILED_TIMEOUT, JobStatus.STARTED),
    ],
)
def test_allowed_transitions(current: JobStatus, target: JobStatus) -> None:
    ensure_transition(current, target)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (JobStatus.STARTED, JobStatus.QUEUED),
        (JobStatus.STARTED, JobStatus.STARTED),
        (JobStatus.QUEUED, JobStatus.FAILED_UNKNOWN),
    ],
)
def test_rejected_transitions(current: JobStatus, target: JobStatus) -> None:
    with pytest.raises(InvalidJobTransitionError) as excinfo:
        ensure_transition(current, target)

    assert isinstance(excinfo.value, SchedulerError)
    assert excinfo.value.current is current


def test_is_stale_uses_idle_window() -> None:
    assert is_stale(NOW - timedelta(hours=1), now=NOW)
    assert not is_stale(NOW - timedelta(minutes=59), now=NOW)
    assert is_stale(NOW - timedelta(minutes=10), now=NOW, idle_window=timedelta(minutes=5))


def test_judge_recent_job_is_not_stale() -> None:
    assert judge_stale_job(JobStatus.STARTED, NOW - timedelta(minutes=30), now=NOW) == NOT_STALE


def test_judge_idle_busy_job_is_timed_out_but_kept() -> None:
    verdict = judge_stale_job(JobStatus.QUEUED, NOW - timedelta(hours=5), now=NOW)

    assert verdict.mark_timed_out
    assert not verdict.remove
    assert verdict.is_stale


def test_judge_old_job_is_removed() -> None:
    busy = judge_stale_job(JobStatus.STARTED, NOW - timedelta(days=2), now=NOW)
    failed = judge_stale_job(JobStatus.FAILED_UNKNOWN, NOW - timedelta(days=2), now=NOW)

    assert busy.mark_timed_out and busy.remove
    assert not failed.mark_timed_out and failed.remove
