"""Routes to request statistics for an event and poll the job."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Response, status

from ...config import RuntimeConfig
from ...db.db_models import Event, Job
from ...domain.jobs import JobState, ensure_transition
from ...domain.models import JobStatus
from ...exceptions import JobFailedError, NotFoundError, QuotaExceededError, ServiceOverloadError
from ...repositories.event_store import EventStore
from ...repositories.job_repository import JobRepository
from ..errors import invalid_event_error, not_found_error, service_overload_error
from ..schemas import JobStatusResponse
from .dependencies import JobHandlerFactory, get_job_handler_factory, get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["Jobs"])

EventId = Annotated[int, Path(ge=1, description="Event identifier")]


def _status_response(event: Event) -> JobStatusResponse:
    job = event.job
    return JobStatusResponse(
        event_id=event.id,
        job_id=job.id if job is not None else None,
        status=JobState.from_status(job.status if job is not None else None),
    )


def _load_event(store: EventStore, event_id: int) -> Event:
    try:
        return store.get(event_id)
    except NotFoundError:
        raise not_found_error(f"Event '{event_id}' not found") from None


def _submit(runtime: RuntimeConfig, factory: JobHandlerFactory, event_id: int) -> JobStatusResponse:
    with runtime.session_factory() as session:
        store = EventStore(session)
        event = _load_event(store, event_id)
        if not event.is_valid():
            raise invalid_event_error("Event needs wikis, a start date in the past and participants or categories")

        handler = factory(runtime, session)
        handler.handle_stale_jobs(event)

        job = event.job
        if job is not None and not job.has_failed:
            # Already queued or running.
            return _status_response(event)
        if job is None:
            job = JobRepository(session).create(event)
        else:
            ensure_transition(job.status, JobStatus.QUEUED)
            job.status = JobStatus.QUEUED
        session.commit()
        logger.info("jobs.submitted", extra={"event_id": event_id, "job_id": job.id})

        if event.is_heavy():
            logger.info("jobs.deferred", extra={"event_id": event_id, "reason": "heavy"})
            return _status_response(event)

        try:
            handler.spawn(job)
        except QuotaExceededError:
            logger.info("jobs.deferred", extra={"event_id": event_id, "reason": "quota"})
        except JobFailedError as exc:
            # Recorded on the job; pollers see the failed status.
            logger.error("jobs.failed", extra={"event_id": event_id, "timed_out": exc.timed_out})
        except ServiceOverloadError as exc:
            raise service_overload_error(exc.retry_after) from exc
        return _status_response(event)


def _poll(runtime: RuntimeConfig, factory: JobHandlerFactory, event_id: int) -> JobStatusResponse:
    with runtime.session_factory() as session:
        event = _load_event(EventStore(session), event_id)
        factory(runtime, session).handle_stale_jobs(event)
        return _status_response(event)


def _delete(runtime: RuntimeConfig, event_id: int) -> None:
    with runtime.session_factory() as session:
        event = _load_event(EventStore(session), event_id)
        if event.jobs:
            event.clear_jobs()
            session.commit()
            logger.info("jobs.deleted", extra={"event_id": event_id})


@router.post("/{event_id}/process", response_model=JobStatusResponse, status_code=status.HTTP_202_ACCEPTED)
async def process_event(
    event_id: EventId,
    runtime: Annotated[RuntimeConfig, Depends(get_runtime)],
    factory: Annotated[JobHandlerFactory, Depends(get_job_handler_factory)],
) -> JobStatusResponse:
    """Queue statistics generation and run it right away when allowed."""

    return await asyncio.to_thread(_submit, runtime, factory, event_id)


@router.get("/{event_id}/job-status", response_model=JobStatusResponse)
async def job_status(
    event_id: EventId,
    runtime: Annotated[RuntimeConfig, Depends(get_runtime)],
    factory: Annotated[JobHandlerFactory, Depends(get_job_handler_factory)],
) -> JobStatusResponse:
    """Report the job state; ``complete`` once no job remains."""

    return await asyncio.to_thread(_poll, runtime, factory, event_id)


@router.delete("/{event_id}/job", status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(
    event_id: EventId,
    runtime: Annotated[RuntimeConfig, Depends(get_runtime)],
) -> Response:
    await asyncio.to_thread(_delete, runtime, event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
