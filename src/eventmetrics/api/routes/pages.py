"""Page-level reports of an event."""

from __future__ import annotations

import asyncio
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Path

from ...config import RuntimeConfig
from ...exceptions import NotFoundError
from ...repositories.event_store import EventStore
from ..errors import not_found_error
from ..schemas import PageReportResponse, PageRow
from .dependencies import PageReportFactory, get_page_report_factory, get_runtime

router = APIRouter(prefix="/events", tags=["Reports"])


def _report(
    runtime: RuntimeConfig,
    factory: PageReportFactory,
    event_id: int,
    kind: Literal["created", "improved"],
) -> PageReportResponse:
    with runtime.session_factory() as session:
        try:
            event = EventStore(session).get(event_id)
        except NotFoundError:
            raise not_found_error(f"Event '{event_id}' not found") from None
        rows = factory(runtime).pages_data(event, kind)
    return PageReportResponse(event_id=event_id, kind=kind, pages=[PageRow(**row) for row in rows])


@router.get("/{event_id}/pages/{kind}", response_model=PageReportResponse)
async def pages_report(
    event_id: Annotated[int, Path(ge=1)],
    kind: Annotated[Literal["created", "improved"], Path(description="created or improved")],
    runtime: Annotated[RuntimeConfig, Depends(get_runtime)],
    factory: Annotated[PageReportFactory, Depends(get_page_report_factory)],
) -> PageReportResponse:
    """Per-page details and pageviews of the pages created or improved."""

    return await asyncio.to_thread(_report, runtime, factory, event_id, kind)


__all__ = ["router"]
