"""Pydantic response models of the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ..domain.jobs import JobState


class JobStatusResponse(BaseModel):
    """Job state of an event as seen by pollers."""

    event_id: int
    job_id: int | None = Field(default=None, description="Absent once the job completed.")
    status: JobState


class PageRow(BaseModel):
    page_title: str
    wiki: str
    edits: int
    bytes: int
    links: int
    avg_pageviews: int
    creator: str | None = None
    pageviews: int | None = Field(default=None, description="Views since the event start (created pages only).")


class PageReportResponse(BaseModel):
    event_id: int
    kind: str
    pages: list[PageRow]


__all__ = ["JobStatusResponse", "PageReportResponse", "PageRow"]
