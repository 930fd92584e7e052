"""Wiki-level replica queries: page sets, byte deltas, pageviews and page details."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Iterator, Sequence
from datetime import date, datetime, timedelta
from typing import Any

from ..domain.models import COMMONS_DB_NAME, FAMILY_PREFIX, Metric, PageKind
from ..exceptions import UnknownDomainError
from ..infrastructure.cache import TTLCache
from ..infrastructure.replicas import ReplicasClient
from ..pageviews.client import PageviewsClient, yesterday
from .replica_repository import ReplicaRepository, as_text, qualified, replica_timestamp, revision_table

DEFAULT_MAX_PAGES = 50_000
DEFAULT_CHUNK_SIZE = 100
FILE_NAMESPACE = 6
MAIN_NAMESPACE = 0

_DOMAIN_FROM_URL_RE = re.compile(r"^https?://(.*)\.org$")


def _chunks(values: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for index in range(0, len(values), size):
        yield values[index : index + size]


class EventWikiRepository(ReplicaRepository):
    """Queries scoped to a single wiki database."""

    def __init__(
        self,
        replicas: ReplicasClient,
        pageviews: PageviewsClient,
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
        pageviews_chunk_size: int = DEFAULT_CHUNK_SIZE,
        page_info_cache: TTLCache | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        super().__init__(replicas)
        self._pageviews = pageviews
        self._max_pages = max_pages
        self._chunk_size = pageviews_chunk_size
        if page_info_cache is None:
            page_info_cache = TTLCache(timedelta(minutes=10))
        self._page_info_cache = page_info_cache
        self._today = today
        self._domains_by_input: dict[str, str | None] = {}
        self._db_names_by_domain: dict[str, str] = {}

    # Site matrix ------------------------------------------------------------

    def get_domain_from_wiki_input(self, value: str) -> str | None:
        """Resolve ``enwiki_p``, ``en.wikipedia`` or ``*.wikipedia`` to a domain."""

        if value in self._domains_by_input:
            return self._domains_by_input[value]

        if value.startswith(FAMILY_PREFIX):
            family = self.get_wiki_family_name(value[len(FAMILY_PREFIX) :])
            domain = f"{FAMILY_PREFIX}{family}" if family is not None else None
            self._domains_by_input[value] = domain
            return domain

        row = self._execute_meta(
            "SELECT dbname, url FROM wiki "
            "WHERE dbname = :project OR url LIKE :project_url OR url LIKE :project_url2 LIMIT 1",
            {
                "project": value.removesuffix("_p"),
                "project_url": f"https://{value}",
                "project_url2": f"https://{value}.org",
            },
        ).first()
        domain = None
        if row is not None:
            match = _DOMAIN_FROM_URL_RE.match(as_text(row[1]))
            domain = match.group(1) if match else None
        self._domains_by_input[value] = domain
        return domain

    def get_wiki_family_name(self, value: str) -> str | None:
        row = self._execute_meta(
            "SELECT family FROM wiki WHERE family = :family LIMIT 1",
            {"family": value},
        ).first()
        return as_text(row[0]) if row is not None else None

    def get_db_name_from_domain(self, domain: str) -> str:
        if domain not in self._db_names_by_domain:
            row = self._execute_meta(
                "SELECT CONCAT(dbname, '_p') AS dbname FROM wiki WHERE url = :project_url",
                {"project_url": f"https://{domain}.org"},
            ).first()
            if row is None or not row[0]:
                raise UnknownDomainError(f"Unable to determine database name for domain '{domain}'.")
            self._db_names_by_domain[domain] = as_text(row[0])
        return self._db_names_by_domain[domain]

    # Page sets --------------------------------------------------------------

    def get_page_ids(
        self,
        db_name: str,
        start: datetime,
        end: datetime,
        actors: Sequence[int] = (),
        category_titles: Sequence[str] = (),
        kind: PageKind | str = PageKind.ANY,
    ) -> list[int]:
        """Non-redirect pages with revisions in the window.

        ``created`` keeps revisions without a parent, ``edited`` those with
        one, and ``files`` looks at parentless revisions in the file
        namespace. Local file uploads require participants, and categories do
        not apply to them; Commons accepts both.
        """

        kind = PageKind(kind)
        is_commons = db_name == COMMONS_DB_NAME
        if not actors and not category_titles:
            return []
        if kind is PageKind.FILES and not is_commons and not actors:
            return []

        use_categories = bool(category_titles) and not (kind is PageKind.FILES and not is_commons)
        revisions = qualified(db_name, revision_table(filter_by_actor=bool(actors)))
        sql = (
            f"SELECT DISTINCT rev_page FROM {revisions} "
            f"JOIN {qualified(db_name, 'page')} ON page_id = rev_page "
        )
        params: dict[str, Any] = {"start": replica_timestamp(start), "end": replica_timestamp(end)}
        conditions = [
            f"page_namespace = {FILE_NAMESPACE if kind is PageKind.FILES else MAIN_NAMESPACE}",
            "page_is_redirect = 0",
            "rev_timestamp BETWEEN :start AND :end",
        ]
        if use_categories:
            sql += f"JOIN {qualified(db_name, 'categorylinks')} ON cl_from = rev_page "
            conditions.insert(0, "cl_to IN :category_titles")
            params["category_titles"] = list(category_titles)
        if actors:
            conditions.append("rev_actor IN :actors")
            params["actors"] = [int(actor) for actor in actors]
        if kind is PageKind.EDITED:
            conditions.append("rev_parent_id != 0")
        elif kind in (PageKind.CREATED, PageKind.FILES):
            conditions.append("rev_parent_id = 0")
        sql += "WHERE " + " AND ".join(conditions) + f" LIMIT {int(self._max_pages)}"

        return [int(page_id) for page_id in self._execute(db_name, sql, params).scalars().all()]

    def get_page_titles(self, db_name: str, page_ids: Sequence[int]) -> list[str]:
        return [title for _, title in self.get_page_ids_and_titles(db_name, page_ids)]

    def get_page_ids_and_titles(self, db_name: str, page_ids: Sequence[int]) -> list[tuple[int, str]]:
        if not page_ids:
            return []
        result = self._execute(
            db_name,
            f"SELECT page_id, page_title FROM {qualified(db_name, 'page')} WHERE page_id IN :page_ids",
            {"page_ids": [int(page_id) for page_id in page_ids]},
        )
        return [(int(page_id), as_text(title)) for page_id, title in result.all()]

    def get_bytes_changed(
        self,
        db_name: str,
        page_ids: Sequence[int],
        start: datetime,
        end: datetime,
        actors: Sequence[int] = (),
    ) -> int:
        """Sum over pages of (last length in window) minus (length before window)."""

        if not page_ids:
            return 0
        revisions = qualified(db_name, revision_table())
        actor_condition = "AND cur.rev_actor IN :actors" if actors else ""
        after = (
            f"SELECT COALESCE(cur.rev_len, 0) FROM {revisions} cur "
            "WHERE cur.rev_page = page_id AND cur.rev_timestamp BETWEEN :start AND :end "
            f"{actor_condition} ORDER BY cur.rev_timestamp DESC LIMIT 1"
        )
        before = (
            f"SELECT COALESCE(prev.rev_len, 0) FROM {revisions} cur "
            f"LEFT JOIN {revisions} prev ON cur.rev_parent_id = prev.rev_id "
            "WHERE cur.rev_page = page_id AND cur.rev_timestamp BETWEEN :start AND :end "
            f"{actor_condition} ORDER BY cur.rev_timestamp ASC LIMIT 1"
        )
        sql = (
            "SELECT SUM(after) - SUM(before_) FROM ("
            f"SELECT ({after}) after, ({before}) before_ "
            f"FROM {qualified(db_name, 'page')} WHERE page_id IN :page_ids"
            ") t1"
        )
        params: dict[str, Any] = {
            "start": replica_timestamp(start),
            "end": replica_timestamp(end),
            "page_ids": [int(page_id) for page_id in page_ids],
        }
        if actors:
            params["actors"] = [int(actor) for actor in actors]
        return int(self._execute(db_name, sql, params).scalar() or 0)

    def get_users_from_page_ids(
        self, db_name: str, page_ids: Sequence[int], start: datetime, end: datetime
    ) -> list[str]:
        """Registered users who edited ``page_ids`` during the window."""

        if not page_ids:
            return []
        result = self._execute(
            db_name,
            "SELECT DISTINCT actor_name "
            f"FROM {qualified(db_name, revision_table())} r "
            f"JOIN {qualified(db_name, 'actor')} a ON a.actor_id = r.rev_actor "
            "WHERE rev_page IN :page_ids AND actor_user IS NOT NULL "
            "AND rev_timestamp BETWEEN :start AND :end",
            {
                "page_ids": [int(page_id) for page_id in page_ids],
                "start": replica_timestamp(start),
                "end": replica_timestamp(end),
            },
        )
        return [as_text(name) for name in result.scalars().all()]

    # Pageviews --------------------------------------------------------------

    def _yesterday(self) -> date:
        return yesterday(self._today() if self._today else None)

    def get_pageviews(
        self,
        db_name: str,
        domain: str,
        start: datetime,
        page_ids: Sequence[int],
        daily_average: bool = False,
    ) -> int:
        """Views of ``page_ids`` from ``start`` to yesterday, or their recent daily average."""

        if not page_ids:
            return 0
        titles = self.get_page_titles(db_name, page_ids)
        offset = Metric.PAGES_IMPROVED_PAGEVIEWS_AVG.offset or 30
        end = self._yesterday()
        total = 0
        # Titles are requested concurrently one chunk at a time.
        for chunk in _chunks(titles, self._chunk_size):
            if daily_average:
                total += asyncio.run(
                    self._pageviews.get_avg_pageviews(domain, list(chunk), offset, today=end + timedelta(days=1))
                )
            else:
                total += asyncio.run(self._pageviews.get_pageviews(domain, list(chunk), start, end))
        return total

    # Page details -----------------------------------------------------------

    def get_single_page_created_data(
        self,
        db_name: str,
        page_id: int,
        page_title: str,
        actors: Sequence[int],
        end: datetime,
    ) -> dict[str, Any]:
        """Creator, edit count, size and inbound links of a created page (cached)."""

        key = ("pages_created_info", db_name, page_id, page_title, tuple(actors), end)
        return self._page_info_cache.get_or_set(
            key, lambda: self._query_single_page_created(db_name, page_id, page_title, actors, end)
        )

    def _query_single_page_created(
        self, db_name: str, page_id: int, page_title: str, actors: Sequence[int], end: datetime
    ) -> dict[str, Any]:
        revisions = qualified(db_name, revision_table(filter_by_actor=bool(actors)))
        actor_condition = "AND rev_actor IN :actors" if actors else ""
        sql = (
            "SELECT metric, value FROM ("
            "(SELECT 'creator' AS metric, actor_name AS value "
            f"FROM {qualified(db_name, 'revision')} JOIN {qualified(db_name, 'actor')} ON rev_actor = actor_id "
            "WHERE rev_page = :page_id AND rev_parent_id = 0 LIMIT 1) "
            "UNION (SELECT 'edits' AS metric, COUNT(*) AS value "
            f"FROM {revisions} WHERE rev_page = :page_id AND rev_timestamp <= :end {actor_condition}) "
            "UNION (SELECT 'bytes' AS metric, rev_len AS value "
            f"FROM {revisions} WHERE rev_page = :page_id AND rev_timestamp <= :end {actor_condition} "
            "ORDER BY rev_timestamp DESC LIMIT 1) "
            f"UNION ({self._links_sql(db_name)})"
            ") t1"
        )
        params: dict[str, Any] = {"page_id": int(page_id), "page_title": page_title, "end": replica_timestamp(end)}
        if actors:
            params["actors"] = [int(actor) for actor in actors]
        rows = {as_text(metric): value for metric, value in self._execute(db_name, sql, params).all()}
        return {
            "creator": as_text(rows["creator"]) if rows.get("creator") is not None else None,
            "edits": int(rows.get("edits") or 0),
            "bytes": int(rows.get("bytes") or 0),
            "links": int(rows.get("links") or 0),
        }

    def get_single_page_improved_data(
        self,
        db_name: str,
        page_id: int,
        page_title: str,
        actors: Sequence[int],
        start: datetime,
        end: datetime,
    ) -> dict[str, int]:
        """Edit count, net size change and inbound links of an improved page (cached)."""

        key = ("pages_improved_info", db_name, page_id, page_title, tuple(actors), start, end)
        return self._page_info_cache.get_or_set(
            key, lambda: self._query_single_page_improved(db_name, page_id, page_title, actors, start, end)
        )

    def _query_single_page_improved(
        self,
        db_name: str,
        page_id: int,
        page_title: str,
        actors: Sequence[int],
        start: datetime,
        end: datetime,
    ) -> dict[str, int]:
        revisions = qualified(db_name, revision_table(filter_by_actor=bool(actors)))
        actor_condition = "AND rev.rev_actor IN :actors" if actors else ""
        window = "rev.rev_page = :page_id AND rev.rev_timestamp BETWEEN :start AND :end"
        sql = (
            "SELECT metric, value FROM ("
            "(SELECT 'edits' AS metric, COUNT(*) AS value "
            f"FROM {revisions} rev WHERE {window} {actor_condition}) "
            "UNION (SELECT 'start_bytes' AS metric, COALESCE(prev.rev_len, 0) AS value "
            f"FROM {revisions} rev LEFT JOIN {revisions} prev ON rev.rev_parent_id = prev.rev_id "
            f"WHERE {window} {actor_condition} ORDER BY rev.rev_timestamp ASC LIMIT 1) "
            "UNION (SELECT 'end_bytes' AS metric, COALESCE(rev.rev_len, 0) AS value "
            f"FROM {revisions} rev WHERE {window} {actor_condition} "
            "ORDER BY rev.rev_timestamp DESC LIMIT 1) "
            f"UNION ({self._links_sql(db_name)})"
            ") t1"
        )
        params: dict[str, Any] = {
            "page_id": int(page_id),
            "page_title": page_title,
            "start": replica_timestamp(start),
            "end": replica_timestamp(end),
        }
        if actors:
            params["actors"] = [int(actor) for actor in actors]
        rows = {as_text(metric): int(value or 0) for metric, value in self._execute(db_name, sql, params).all()}
        return {
            "edits": rows.get("edits", 0),
            "links": rows.get("links", 0),
            "bytes": rows.get("end_bytes", 0) - rows.get("start_bytes", 0),
        }

    @staticmethod
    def _links_sql(db_name: str) -> str:
        return (
            "SELECT 'links' AS metric, COUNT(*) AS value "
            f"FROM {qualified(db_name, 'pagelinks')} "
            f"JOIN {qualified(db_name, 'page')} ON page_id = pl_from "
            f"JOIN {qualified(db_name, 'linktarget')} ON lt_id = pl_target_id "
            "WHERE pl_from_namespace = 0 AND lt_namespace = 0 "
            "AND lt_title = :page_title AND page_is_redirect = 0"
        )

    def get_pages_created_data(
        self,
        domain: str,
        page_ids: Sequence[int],
        actors: Sequence[int],
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        """Report rows for created pages: details plus total and average pageviews."""

        db_name = self.get_db_name_from_domain(domain)
        pages = self.get_page_ids_and_titles(db_name, page_ids)
        offset = Metric.PAGES_IMPROVED_PAGEVIEWS_AVG.offset or 30
        last_day = self._yesterday()
        rows = []
        for page_id, title in pages:
            pageviews, avg_pageviews = asyncio.run(
                self._pageviews.get_pageviews(domain, [title], start, last_day, offset)
            )
            info = self.get_single_page_created_data(db_name, page_id, title, actors, end)
            rows.append(
                {
                    **info,
                    "page_title": title,
                    "wiki": domain,
                    "pageviews": int(pageviews),
                    "avg_pageviews": int(avg_pageviews),
                }
            )
        return rows

    def get_pages_improved_data(
        self,
        domain: str,
        page_ids: Sequence[int],
        actors: Sequence[int],
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        """Report rows for improved pages: details plus recent average pageviews."""

        db_name = self.get_db_name_from_domain(domain)
        pages = self.get_page_ids_and_titles(db_name, page_ids)
        offset = Metric.PAGES_IMPROVED_PAGEVIEWS_AVG.offset or 30
        today = self._yesterday() + timedelta(days=1)
        rows = []
        for page_id, title in pages:
            avg_pageviews = asyncio.run(self._pageviews.get_avg_pageviews(domain, [title], offset, today=today))
            info = self.get_single_page_improved_data(db_name, page_id, title, actors, start, end)
            rows.append({**info, "page_title": title, "wiki": domain, "avg_pageviews": int(avg_pageviews)})
        return rows


__all__ = ["EventWikiRepository"]
