"""Service composition helpers."""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy.orm import Session

from ..config import RuntimeConfig
from ..pageviews.client import PageviewsClient
from ..repositories.event_repository import EventRepository
from ..repositories.event_store import EventStore
from ..repositories.event_wiki_repository import EventWikiRepository
from .event_processor import EventProcessor
from .job_handler import JobHandler


def build_pageviews_client(runtime: RuntimeConfig) -> PageviewsClient:
    settings = runtime.settings
    return PageviewsClient(
        endpoint=settings.pageviews_endpoint,
        timeout_seconds=settings.pageviews_timeout_seconds,
        connect_timeout_seconds=settings.pageviews_connect_timeout_seconds,
        retries=settings.pageviews_retries,
        concurrency=settings.pageviews_concurrency,
        user_agent=settings.pageviews_user_agent,
    )


def build_wiki_repository(runtime: RuntimeConfig) -> EventWikiRepository:
    settings = runtime.settings
    return EventWikiRepository(
        runtime.replicas,
        build_pageviews_client(runtime),
        max_pages=settings.max_pages,
        pageviews_chunk_size=settings.pageviews_chunk_size,
        page_info_cache=runtime.page_info_cache,
    )


def build_event_processor(runtime: RuntimeConfig, session: Session) -> EventProcessor:
    return EventProcessor(
        EventStore(session),
        EventRepository(runtime.replicas),
        build_wiki_repository(runtime),
        runtime.replicas,
        actor_cache_size=runtime.settings.actor_cache_size,
    )


def build_job_handler(runtime: RuntimeConfig, session: Session) -> JobHandler:
    settings = runtime.settings
    return JobHandler(
        session,
        build_event_processor(runtime, session),
        runtime.replicas,
        database_quota=settings.database_quota,
        idle_window=timedelta(minutes=settings.stale_job_idle_minutes),
        removal_age=timedelta(hours=settings.stale_job_removal_hours),
    )


__all__ = [
    "build_event_processor",
    "build_job_handler",
    "build_pageviews_client",
    "build_wiki_repository",
]
