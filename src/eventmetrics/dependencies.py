"""Dependency wiring helpers."""

from fastapi import FastAPI

from .api.errors import ApiError, api_error_handler
from .api.routes import jobs_router, pages_router
from .config import RuntimeConfig
from .repositories.event_repository import EventRepository
from .services.container import build_job_handler, build_wiki_repository
from .services.page_reports import PageReportService


def include_routers(app: FastAPI, runtime: RuntimeConfig) -> None:
    """Mount routers and attach service factories."""
    app.state.runtime = runtime
    app.state.job_handler_factory = build_job_handler
    app.state.page_report_factory = lambda rt: PageReportService(
        EventRepository(rt.replicas), build_wiki_repository(rt)
    )

    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    app.include_router(jobs_router)
    app.include_router(pages_router)
