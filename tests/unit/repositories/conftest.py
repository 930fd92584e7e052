from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, timedelta

import pytest

from eventmetrics.infrastructure.cache import TTLCache
from eventmetrics.repositories.event_repository import EventRepository
from eventmetrics.repositories.event_wiki_repository import EventWikiRepository
from tests.mocks.replicas import FakeReplicas


class FakePageviews:
    """Answers ten views per title, with a daily average of two."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[str, ...], object, object]] = []

    async def get_pageviews(
        self,
        domain: str,
        titles: Sequence[str],
        start: date | datetime,
        end: date | datetime,
        avg_offset_days: int | None = None,
    ):
        self.calls.append(("total", tuple(titles), start, end))
        if avg_offset_days is not None:
            return 10 * len(titles), 2 * len(titles)
        return 10 * len(titles)

    async def get_avg_pageviews(
        self, domain: str, titles: Sequence[str], offset: int = 30, *, today: date | None = None
    ) -> int:
        self.calls.append(("average", tuple(titles), offset, today))
        return 2 * len(titles)


@pytest.fixture
def replicas() -> FakeReplicas:
    return FakeReplicas()


@pytest.fixture
def pageviews() -> FakePageviews:
    return FakePageviews()


@pytest.fixture
def event_repository(replicas: FakeReplicas) -> EventRepository:
    return EventRepository(replicas)  # type: ignore[arg-type]


@pytest.fixture
def wiki_repository(replicas: FakeReplicas, pageviews: FakePageviews) -> EventWikiRepository:
    return EventWikiRepository(
        replicas,  # type: ignore[arg-type]
        pageviews,  # type: ignore[arg-type]
        pageviews_chunk_size=2,
        page_info_cache=TTLCache(timedelta(minutes=10)),
        today=lambda: date(2017, 3, 1),
    )
