"""Persistence layer for jobs."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.db_models import Event, Job
from ..domain.models import JobStatus
from ..exceptions import handle_sqlalchemy_errors


class JobRepository:
    """Query and create job rows within the caller's session."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, job_id: int) -> Job | None:
        with handle_sqlalchemy_errors(entity="job"):
            return self._session.get(Job, job_id)

    def get_for_event(self, event_id: int) -> Job | None:
        with handle_sqlalchemy_errors(entity="job"):
            return self._session.scalars(select(Job).where(Job.event_id == event_id)).first()

    def find_queued(self, limit: int) -> list[Job]:
        """Up to ``limit`` queued jobs, oldest submission first."""

        if limit <= 0:
            return []
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.QUEUED)
            .order_by(Job.submitted.asc(), Job.id.asc())
            .limit(limit)
        )
        with handle_sqlalchemy_errors(entity="job"):
            return list(self._session.scalars(stmt))

    def create(self, event: Event) -> Job:
        job = Job()
        event.jobs.append(job)
        with handle_sqlalchemy_errors(entity="job"):
            self._session.flush()
        return job


__all__ = ["JobRepository"]
