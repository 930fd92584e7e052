"""Builders for application database rows used across tests."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from eventmetrics.db.db_models import Event, EventCategory, Job, Participant
from eventmetrics.domain.models import JobStatus

JAN_1_2017 = datetime(2017, 1, 1)
FEB_1_2017 = datetime(2017, 2, 1)


def make_event(
    session: Session,
    *,
    wikis: tuple[str, ...] = ("en.wikipedia",),
    participant_ids: tuple[int, ...] = (1, 2),
    categories: tuple[tuple[str, str], ...] = (),
    start: datetime | None = JAN_1_2017,
    end: datetime | None = FEB_1_2017,
    timezone: str = "UTC",
    title: str = "Test event",
) -> Event:
    event = Event(title=title, start=start, end=end, timezone=timezone)
    for domain in wikis:
        event.add_wiki(domain)
    for user_id in participant_ids:
        event.participants.append(Participant(user_id=user_id))
    for category_title, domain in categories:
        event.categories.append(EventCategory(title=category_title, domain=domain))
    session.add(event)
    session.commit()
    return event


def make_job(
    session: Session,
    event: Event,
    *,
    status: JobStatus = JobStatus.QUEUED,
    submitted: datetime | None = None,
) -> Job:
    kwargs: dict[str, object] = {"status": status}
    if submitted is not None:
        kwargs["submitted"] = submitted
    job = Job(**kwargs)
    event.jobs.append(job)
    session.commit()
    return job


def hours_ago(now: datetime, hours: float) -> datetime:
    return now - timedelta(hours=hours)
