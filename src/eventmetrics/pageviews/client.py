"""Client for the Wikimedia REST pageviews API.

Per-article daily counts are requested concurrently for a batch of titles
and summed once the whole batch has settled. Articles without data (new or
deleted pages answer 404) and requests that keep failing after the retry
budget contribute zero views instead of failing the batch.
"""

from __future__ import annotations

import asyncio
import logging
import urllib.parse
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import date, datetime, timedelta, timezone
from typing import Any, overload

import httpx

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://wikimedia.org/api/rest_v1/metrics/pageviews"
PAGEVIEW_ACCESS = "all-access"
PAGEVIEW_AGENT = "user"
GRANULARITY_DAILY = "daily"
DEFAULT_AVG_OFFSET_DAYS = 30

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def yesterday(today: date | None = None) -> date:
    """Most recent day for which the API has complete data."""

    current = today or datetime.now(timezone.utc).date()
    return current - timedelta(days=1)


def process_response(
    data: dict[str, Any] | None,
    end: date | datetime,
    avg_offset_date: date | datetime | None = None,
) -> int | tuple[int, int]:
    """Sum the views of one per-article response.

    With ``avg_offset_date`` the result is ``(total, average)`` where the
    average covers items dated on or after ``avg_offset_date`` and is taken
    over the days from the earliest such item up to ``end`` inclusive.
    """

    items = (data or {}).get("items")
    if not items:
        return (0, 0) if avg_offset_date is not None else 0

    offset_date = _as_date(avg_offset_date) if avg_offset_date is not None else None
    total = 0
    recent = 0
    earliest_recent: date | None = None
    for item in items:
        views = int(item.get("views", 0))
        total += views
        if offset_date is None:
            continue
        item_date = datetime.strptime(str(item["timestamp"])[:8], "%Y%m%d").date()
        if item_date >= offset_date:
            recent += views
            if earliest_recent is None or item_date < earliest_recent:
                earliest_recent = item_date

    if offset_date is None:
        return total
    if earliest_recent is None:
        return total, 0
    num_days = (_as_date(end) - earliest_recent).days + 1
    return total, round(recent / num_days)


class PageviewsClient:
    """Fetch and aggregate per-article pageviews."""

    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout_seconds: float = 3.0,
        connect_timeout_seconds: float = 1.5,
        retries: int = 3,
        concurrency: int = 10,
        user_agent: str = "eventmetrics/0.1",
        retry_delay_seconds: float = 0.1,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout_seconds
        self._connect_timeout = connect_timeout_seconds
        self._retries = max(0, retries)
        self._concurrency = max(1, concurrency)
        self._user_agent = user_agent
        self._retry_delay = retry_delay_seconds
        self._http_client = http_client
        self._sleep = sleep or asyncio.sleep

    # Public API -------------------------------------------------------------

    def article_url(self, domain: str, title: str, start: date | datetime, end: date | datetime) -> str:
        article = urllib.parse.quote(title.replace(" ", "_"), safe="")
        return (
            f"{self._endpoint}/per-article/{domain}"
            f"/{PAGEVIEW_ACCESS}/{PAGEVIEW_AGENT}"
            f"/{article}/{GRANULARITY_DAILY}"
            f"/{_as_date(start):%Y%m%d}/{_as_date(end):%Y%m%d}"
        )

    @overload
    async def get_pageviews(
        self,
        domain: str,
        titles: Sequence[str],
        start: date | datetime,
        end: date | datetime,
        avg_offset_days: None = None,
    ) -> int: ...

    @overload
    async def get_pageviews(
        self,
        domain: str,
        titles: Sequence[str],
        start: date | datetime,
        end: date | datetime,
        avg_offset_days: int,
    ) -> tuple[int, int]: ...

    async def get_pageviews(
        self,
        domain: str,
        titles: Sequence[str],
        start: date | datetime,
        end: date | datetime,
        avg_offset_days: int | None = None,
    ) -> int | tuple[int, int]:
        """Total views of ``titles`` between ``start`` and ``end``.

        When ``avg_offset_days`` is given, returns ``(total, average)`` where
        ``average`` is the summed daily average of the last
        ``avg_offset_days`` days before ``end``.
        """

        responses = await self._fetch_all(domain, titles, start, end)
        avg_offset_date = _as_date(end) - timedelta(days=avg_offset_days) if avg_offset_days else None

        total = 0
        average = 0
        for data in responses:
            if data is None:
                continue
            if avg_offset_date is not None:
                views, avg_views = process_response(data, end, avg_offset_date)
                total += views
                average += avg_views
            else:
                total += process_response(data, end)

        if avg_offset_days is not None:
            return total, average
        return total

    async def get_avg_pageviews(
        self,
        domain: str,
        titles: Sequence[str],
        offset: int = DEFAULT_AVG_OFFSET_DAYS,
        *,
        today: date | None = None,
    ) -> int:
        """Summed daily average of ``titles`` over the last ``offset`` days."""

        end = yesterday(today)
        start = end - timedelta(days=offset)
        _, average = await self.get_pageviews(domain, titles, start, end, offset)
        return average

    # Transport --------------------------------------------------------------

    def _build_http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout, connect=self._connect_timeout),
            headers={"User-Agent": self._user_agent},
        )

    async def _fetch_all(
        self,
        domain: str,
        titles: Iterable[str],
        start: date | datetime,
        end: date | datetime,
    ) -> list[dict[str, Any] | None]:
        urls = [self.article_url(domain, title, start, end) for title in titles]
        if not urls:
            return []
        semaphore = asyncio.Semaphore(self._concurrency)
        if self._http_client is not None:
            # Injected clients belong to the caller and stay open.
            return await self._gather(self._http_client, urls, semaphore)
        async with self._build_http_client() as client:
            return await self._gather(client, urls, semaphore)

    async def _gather(
        self,
        client: httpx.AsyncClient,
        urls: Sequence[str],
        semaphore: asyncio.Semaphore,
    ) -> list[dict[str, Any] | None]:
        return list(await asyncio.gather(*(self._fetch(client, url, semaphore) for url in urls)))

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        url: str,
        semaphore: asyncio.Semaphore,
    ) -> dict[str, Any] | None:
        attempt = 0
        while True:
            reason: str
            async with semaphore:
                try:
                    response = await client.get(url)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as exc:
                    status = exc.response.status_code
                    if status not in _RETRYABLE_STATUS:
                        # No data for this article, most likely.
                        logger.debug("pageviews.fetch.no_data", extra={"url": url, "status": status})
                        return None
                    reason = f"HTTP {status}"
                except httpx.RequestError as exc:
                    reason = str(exc) or exc.__class__.__name__
                except ValueError:
                    logger.warning("pageviews.fetch.invalid_json", extra={"url": url})
                    return None

            attempt += 1
            if attempt > self._retries:
                logger.error(
                    "pageviews.fetch.failed",
                    extra={"url": url, "retries": self._retries, "reason": reason},
                )
                return None
            logger.info(
                "pageviews.fetch.retry",
                extra={"url": url, "attempt": attempt, "max": self._retries, "reason": reason},
            )
            await self._sleep(self._retry_delay)


__all__ = [
    "DEFAULT_AVG_OFFSET_DAYS",
    "DEFAULT_ENDPOINT",
    "PageviewsClient",
    "process_response",
    "yesterday",
]
