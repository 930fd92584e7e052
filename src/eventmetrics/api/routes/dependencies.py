"""Accessors for the services attached to the application state."""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request
from sqlalchemy.orm import Session

from ...config import RuntimeConfig
from ...services.job_handler import JobHandler
from ...services.page_reports import PageReportService

JobHandlerFactory = Callable[[RuntimeConfig, Session], JobHandler]
PageReportFactory = Callable[[RuntimeConfig], PageReportService]


def get_runtime(request: Request) -> RuntimeConfig:
    """Return the runtime configuration from FastAPI state."""

    runtime = getattr(request.app.state, "runtime", None)
    if not isinstance(runtime, RuntimeConfig):  # pragma: no cover - defensive branch
        raise RuntimeError("runtime configuration is not initialised")
    return runtime


def get_job_handler_factory(request: Request) -> JobHandlerFactory:
    try:
        return request.app.state.job_handler_factory  # type: ignore[no-any-return]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("JobHandler factory is not configured") from exc


def get_page_report_factory(request: Request) -> PageReportFactory:
    try:
        return request.app.state.page_report_factory  # type: ignore[no-any-return]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("PageReportService factory is not configured") from exc


__all__ = [
    "JobHandlerFactory",
    "PageReportFactory",
    "get_job_handler_factory",
    "get_page_report_factory",
    "get_runtime",
]
