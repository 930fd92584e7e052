"""Per-page report rows for the pages created and improved by an event."""

from __future__ import annotations

from typing import Any, Literal

from ..db.db_models import Event
from ..domain.models import PAGEVIEWS_BLACKLIST
from ..repositories.event_repository import EventRepository
from ..repositories.event_wiki_repository import EventWikiRepository

PageReportKind = Literal["created", "improved"]


class PageReportService:
    """Join stored page IDs with live page details and pageviews."""

    def __init__(self, event_repository: EventRepository, wiki_repository: EventWikiRepository) -> None:
        self._events = event_repository
        self._wikis = wiki_repository

    def pages_data(self, event: Event, kind: PageReportKind) -> list[dict[str, Any]]:
        """Rows for every concrete wiki of ``event``, in wiki order."""

        usernames = self._events.get_usernames_from_ids(event.participant_ids)
        start, end = event.start_utc, event.end_utc
        rows: list[dict[str, Any]] = []
        for wiki in event.wikis:
            if wiki.is_family_wiki or wiki.family_name in PAGEVIEWS_BLACKLIST or wiki.domain is None:
                continue
            page_ids = wiki.pages_created if kind == "created" else wiki.pages_improved
            if not page_ids:
                continue
            db_name = self._wikis.get_db_name_from_domain(wiki.domain)
            actors = self._events.get_actor_ids_from_usernames(db_name, usernames)
            if kind == "created":
                rows.extend(self._wikis.get_pages_created_data(wiki.domain, page_ids, actors, start, end))
            else:
                rows.extend(self._wikis.get_pages_improved_data(wiki.domain, page_ids, actors, start, end))
        return rows


__all__ = ["PageReportKind", "PageReportService"]
