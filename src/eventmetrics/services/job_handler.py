"""Admission control and failure classification for statistics jobs."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from sqlalchemy.orm import Session

from ..db.db_models import Event, Job, utcnow
from ..domain.jobs import DEFAULT_IDLE_WINDOW, DEFAULT_REMOVAL_AGE, ensure_transition, judge_stale_job
from ..domain.models import JobStatus
from ..exceptions import JobFailedError, QuotaExceededError, handle_sqlalchemy_errors, is_query_timeout
from ..repositories.interfaces import ReplicaConnections
from ..repositories.job_repository import JobRepository
from .event_processor import EventProcessor, ProgressCallback

logger = structlog.get_logger(__name__)

DEFAULT_DATABASE_QUOTA = 5


class JobHandler:
    """Run jobs only while the replicas have connection quota to spare.

    Quota is measured from the live process lists of every replica slice on
    each call, since jobs run from several independent processes.
    """

    def __init__(
        self,
        session: Session,
        processor: EventProcessor,
        replicas: ReplicaConnections,
        *,
        database_quota: int = DEFAULT_DATABASE_QUOTA,
        idle_window: timedelta = DEFAULT_IDLE_WINDOW,
        removal_age: timedelta = DEFAULT_REMOVAL_AGE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._jobs = JobRepository(session)
        self._processor = processor
        self._replicas = replicas
        self._database_quota = database_quota
        self._idle_window = idle_window
        self._removal_age = removal_age
        self._clock = clock or utcnow

    def get_quota(self) -> int:
        """Number of further jobs that may run right now."""

        open_connections = self._replicas.count_open_connections()
        return max(self._database_quota - open_connections, 0)

    def spawn(self, job: Job, on_progress: ProgressCallback | None = None) -> None:
        """Run ``job`` now, or raise :class:`QuotaExceededError` leaving it untouched."""

        quota = self.get_quota()
        if quota == 0:
            logger.warning("job_handler.quota.exhausted", job_id=job.id, event_id=job.event_id)
            raise QuotaExceededError()
        self._process_job(job, on_progress)

    def spawn_all(self) -> int:
        """Run as many queued jobs as the quota admits, oldest first."""

        quota = self.get_quota()
        if quota == 0:
            # Expected back-pressure; the next sweep tries again.
            logger.info("job_handler.quota.exhausted")
            return 0

        jobs = self._jobs.find_queued(quota)
        logger.info("job_handler.spawn_all", quota=quota, jobs=len(jobs))
        for job in jobs:
            self._process_job(job)
        return len(jobs)

    def handle_stale_jobs(self, event: Event) -> None:
        """Fail or remove jobs of ``event`` that have been idle implausibly long."""

        now = self._clock()
        changed = False
        for job in list(event.jobs):
            verdict = judge_stale_job(
                job.status,
                job.submitted,
                now=now,
                idle_window=self._idle_window,
                removal_age=self._removal_age,
            )
            if verdict.mark_timed_out:
                job.status = JobStatus.FAILED_TIMEOUT
                changed = True
                logger.warning("job_handler.job.stale", job_id=job.id, event_id=event.id)
            if verdict.remove:
                event.remove_job(job)
                changed = True
                logger.warning("job_handler.job.removed", job_id=job.id, event_id=event.id)
        if changed:
            self._commit()

    def _process_job(self, job: Job, on_progress: ProgressCallback | None = None) -> None:
        event = job.event
        event_id = job.event_id
        job_id = job.id

        ensure_transition(job.status, JobStatus.STARTED)
        job.status = JobStatus.STARTED
        # Persisted first so a crash mid-run leaves the job visibly started.
        self._commit()
        logger.info("job_handler.job.started", job_id=job_id, event_id=event_id)

        try:
            self._processor.process(event, on_progress)
        except Exception as exc:
            timed_out = is_query_timeout(exc)
            # A failed app-DB flush leaves the session unusable until rolled back.
            self._session.rollback()
            job.status = JobStatus.FAILED_TIMEOUT if timed_out else JobStatus.FAILED_UNKNOWN
            self._commit()
            logger.exception(
                "job_handler.job.failed",
                job_id=job_id,
                event_id=event_id,
                timed_out=timed_out,
            )
            raise JobFailedError(event_id, timed_out=timed_out) from exc

        logger.info("job_handler.job.completed", event_id=event_id)

    def _commit(self) -> None:
        with handle_sqlalchemy_errors(entity="job"):
            self._session.commit()


__all__ = ["JobHandler", "DEFAULT_DATABASE_QUOTA"]
