"""Contracts the statistics engine consumes from its data sources."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from ..domain.models import PageKind


class EventDataSource(Protocol):
    """Cross-wiki and identity queries."""

    def get_usernames_from_ids(self, user_ids: Sequence[int]) -> list[str]:
        """Resolve global user IDs to usernames."""

    def get_actor_ids_from_usernames(self, db_name: str, usernames: Sequence[str]) -> list[int]:
        """Resolve usernames to the actor IDs local to ``db_name``."""

    def get_common_lang_wiki_domains(self, usernames: Sequence[str], family: str) -> list[str]:
        """Domains of ``family`` where any of ``usernames`` has a local account."""

    def get_total_edit_count(
        self,
        db_name: str,
        page_ids: Sequence[int],
        start: datetime,
        end: datetime,
        actors: Sequence[int] = (),
    ) -> int:
        """Number of revisions to ``page_ids`` in the window."""

    def get_used_files(self, db_name: str, page_ids: Sequence[int]) -> int:
        """Number of distinct files among ``page_ids`` used in articles."""

    def get_pages_using_files(self, db_name: str, page_ids: Sequence[int]) -> list[tuple[str, int]]:
        """``(db_name, page_id)`` of articles embedding any of the files."""

    def get_common_wikis(self, usernames: Sequence[str]) -> list[str]:
        """Databases where any of ``usernames`` has a local account."""

    def get_users_retained(self, db_name: str, since: datetime, actors: Sequence[int]) -> list[str]:
        """Usernames among ``actors`` with an edit after ``since``."""

    def get_new_editors(
        self,
        usernames: Sequence[str] | None,
        lookback_start: datetime,
        end: datetime,
        *,
        user_ids: Sequence[int] | None = None,
    ) -> list[str]:
        """Usernames whose global account was registered in the window."""


class EventWikiDataSource(Protocol):
    """Per-wiki queries."""

    def get_db_name_from_domain(self, domain: str) -> str:
        """Database name (``enwiki_p``) for a domain (``en.wikipedia``)."""

    def get_domain_from_wiki_input(self, value: str) -> str | None:
        """Domain for a database name or partial domain, ``None`` if unknown."""

    def get_page_ids(
        self,
        db_name: str,
        start: datetime,
        end: datetime,
        actors: Sequence[int] = (),
        category_titles: Sequence[str] = (),
        kind: PageKind | str = PageKind.ANY,
    ) -> list[int]:
        """Pages touched in the window, restricted by ``kind``."""

    def get_bytes_changed(
        self,
        db_name: str,
        page_ids: Sequence[int],
        start: datetime,
        end: datetime,
        actors: Sequence[int] = (),
    ) -> int:
        """Net size change of ``page_ids`` across the window."""

    def get_users_from_page_ids(
        self, db_name: str, page_ids: Sequence[int], start: datetime, end: datetime
    ) -> list[str]:
        """Registered users who edited ``page_ids`` in the window."""

    def get_pageviews(
        self,
        db_name: str,
        domain: str,
        start: datetime,
        page_ids: Sequence[int],
        daily_average: bool = False,
    ) -> int:
        """Pageviews of ``page_ids`` since ``start``, or their recent daily average."""


class ReplicaConnections(Protocol):
    """Live replica connection handles."""

    def count_open_connections(self) -> int:
        """Largest number of running processes on any replica slice."""

    def reconnect(self) -> int:
        """Ping every open connection, reopening dead ones; return how many were reopened."""


__all__ = ["EventDataSource", "EventWikiDataSource", "ReplicaConnections"]
