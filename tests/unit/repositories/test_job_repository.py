from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from eventmetrics.domain.models import JobStatus
from eventmetrics.repositories.job_repository import JobRepository
from tests.helpers.factories import make_event, make_job

NOW = datetime(2026, 6, 1, 12, 0, 0)


def test_create_attaches_queued_job(session: Session) -> None:
    event = make_event(session)

    job = JobRepository(session).create(event)

    assert job.id is not None
    assert job.status is JobStatus.QUEUED
    assert event.job is job


def test_get_and_get_for_event(session: Session) -> None:
    event = make_event(session)
    job = make_job(session, event)
    repository = JobRepository(session)

    assert repository.get(job.id) is job
    assert repository.get_for_event(event.id) is job
    assert repository.get_for_event(event.id + 100) is None


def test_find_queued_orders_by_submission(session: Session) -> None:
    first = make_event(session, title="first")
    second = make_event(session, title="second")
    started = make_event(session, title="started")
    late = make_job(session, first, submitted=NOW - timedelta(minutes=5))
    early = make_job(session, second, submitted=NOW - timedelta(minutes=30))
    make_job(session, started, status=JobStatus.STARTED, submitted=NOW - timedelta(hours=1))
    repository = JobRepository(session)

    assert repository.find_queued(5) == [early, late]
    assert repository.find_queued(1) == [early]
    assert repository.find_queued(0) == []
