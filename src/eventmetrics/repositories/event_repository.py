"""Event-level replica queries: edit counts, file usage, retention and identity."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from ..domain.models import COMMONS_DB_NAME
from .replica_repository import ReplicaRepository, as_text, qualified, replica_timestamp, revision_table


class EventRepository(ReplicaRepository):
    """Queries spanning a wiki's revisions or the global identity tables."""

    def get_new_editors(
        self,
        usernames: Sequence[str] | None,
        lookback_start: datetime,
        end: datetime,
        *,
        user_ids: Sequence[int] | None = None,
    ) -> list[str]:
        """Users whose global account was registered between ``lookback_start`` and ``end``.

        Candidates are given by name, or by global user ID when ``usernames``
        is ``None``. An explicit empty list short-circuits to no editors.
        """

        if usernames is None:
            if not user_ids:
                return []
            condition, params = "gu_id IN :user_ids", {"user_ids": [int(uid) for uid in user_ids]}
        elif not usernames:
            return []
        else:
            condition, params = "gu_name IN :usernames", {"usernames": list(usernames)}

        result = self._execute_central(
            "SELECT gu_name FROM globaluser "
            f"WHERE gu_registration BETWEEN :start AND :end AND {condition}",
            {"start": replica_timestamp(lookback_start), "end": replica_timestamp(end), **params},
        )
        return [as_text(name) for name in result.scalars().all()]

    def get_total_edit_count(
        self,
        db_name: str,
        page_ids: Sequence[int],
        start: datetime,
        end: datetime,
        actors: Sequence[int] = (),
    ) -> int:
        if not page_ids:
            return 0
        sql = (
            f"SELECT COUNT(*) AS total FROM {qualified(db_name, revision_table())} "
            "WHERE rev_page IN :page_ids AND rev_timestamp BETWEEN :start AND :end"
        )
        params: dict[str, object] = {
            "page_ids": [int(page_id) for page_id in page_ids],
            "start": replica_timestamp(start),
            "end": replica_timestamp(end),
        }
        if actors:
            sql += " AND rev_actor IN :actors"
            params["actors"] = [int(actor) for actor in actors]
        return int(self._execute(db_name, sql, params).scalar() or 0)

    def get_used_files(self, db_name: str, page_ids: Sequence[int]) -> int:
        """Distinct files among ``page_ids`` that are embedded in articles."""

        if not page_ids:
            return 0
        if db_name == COMMONS_DB_NAME:
            sql = (
                "SELECT COUNT(DISTINCT gil_to) AS count "
                "FROM commonswiki_p.globalimagelinks "
                "JOIN commonswiki_p.page "
                "ON gil_to = page_title AND page_namespace = 6 AND gil_page_namespace_id = 0 "
                "WHERE page_id IN :page_ids"
            )
        else:
            sql = (
                f"SELECT COUNT(DISTINCT il_to) AS count FROM {qualified(db_name, 'imagelinks')} "
                f"JOIN {qualified(db_name, 'page')} "
                "ON il_to = page_title AND page_namespace = 6 AND il_from_namespace = 0 "
                "WHERE page_id IN :page_ids"
            )
        result = self._execute(db_name, sql, {"page_ids": [int(page_id) for page_id in page_ids]})
        return int(result.scalar() or 0)

    def get_pages_using_files(self, db_name: str, page_ids: Sequence[int]) -> list[tuple[str, int]]:
        """``(db_name, page_id)`` of every article embedding one of the files."""

        if not page_ids:
            return []
        if db_name == COMMONS_DB_NAME:
            sql = (
                "SELECT CONCAT(gil_wiki, '_p') AS db_name, gil_page AS page_id "
                "FROM commonswiki_p.globalimagelinks "
                "JOIN commonswiki_p.image ON gil_to = img_name "
                "JOIN commonswiki_p.page ON gil_to = page_title AND page_namespace = 6 "
                "WHERE gil_page_namespace_id = 0 AND page_id IN :page_ids "
                "GROUP BY db_name, page_id"
            )
        else:
            sql = (
                f"SELECT '{db_name}' AS db_name, il_from AS page_id "
                f"FROM {qualified(db_name, 'imagelinks')} "
                f"JOIN {qualified(db_name, 'image')} ON il_to = img_name "
                f"JOIN {qualified(db_name, 'page')} ON il_to = page_title AND page_namespace = 6 "
                "WHERE il_from_namespace = 0 AND page_id IN :page_ids "
                "GROUP BY db_name, page_id"
            )
        result = self._execute(db_name, sql, {"page_ids": [int(page_id) for page_id in page_ids]})
        return [(as_text(row_db), int(row_page)) for row_db, row_page in result.all()]

    def get_common_wikis(self, usernames: Sequence[str]) -> list[str]:
        """Databases (``xxwiki_p``) where any of ``usernames`` has a local account."""

        if not usernames:
            return []
        result = self._execute_central(
            "SELECT DISTINCT CONCAT(lu_wiki, '_p') AS dbname FROM localuser WHERE lu_name IN :usernames",
            {"usernames": list(usernames)},
        )
        return [as_text(db_name) for db_name in result.scalars().all()]

    def get_common_lang_wiki_domains(self, usernames: Sequence[str], family: str) -> list[str]:
        """Domains of ``family`` where any of ``usernames`` has a local account."""

        if not usernames:
            return []
        # The language code does not always match the subdomain, so strip
        # "https://" and ".org" from the URL instead.
        result = self._execute_central(
            "SELECT DISTINCT SUBSTRING(url, 9, LENGTH(url) - 12) AS domain "
            "FROM localuser JOIN meta_p.wiki ON lu_wiki = dbname "
            "WHERE family = :family AND lu_name IN :usernames",
            {"family": family, "usernames": list(usernames)},
        )
        return [as_text(domain) for domain in result.scalars().all()]

    def get_users_retained(self, db_name: str, since: datetime, actors: Sequence[int]) -> list[str]:
        """Usernames among ``actors`` with at least one edit at or after ``since``."""

        if not actors:
            return []
        result = self._execute(
            db_name,
            "SELECT DISTINCT actor_name AS username "
            f"FROM {qualified(db_name, revision_table())} r "
            f"JOIN {qualified(db_name, 'actor')} a ON r.rev_actor = a.actor_id "
            "WHERE rev_timestamp >= :since AND rev_actor IN :actors",
            {"since": replica_timestamp(since), "actors": [int(actor) for actor in actors]},
        )
        return [as_text(name) for name in result.scalars().all()]


__all__ = ["EventRepository"]
