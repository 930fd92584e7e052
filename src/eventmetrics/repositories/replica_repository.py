"""Shared plumbing for repositories that query the wiki replicas."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy.engine import Result

from ..infrastructure.replicas import CENTRALAUTH, META, NO_TIMEOUT, ReplicasClient

_DB_NAME_RE = re.compile(r"^[a-z0-9_]+$")


def replica_timestamp(value: datetime) -> str:
    """Format a naive UTC datetime the way MediaWiki stores timestamps."""

    return value.strftime("%Y%m%d%H%M%S")


def qualified(db_name: str, table: str) -> str:
    """Return ``db_name.table`` after checking ``db_name`` is a plain identifier."""

    if not _DB_NAME_RE.match(db_name):
        raise ValueError(f"invalid database name '{db_name}'")
    return f"{db_name}.{table}"


def as_text(value: Any) -> str:
    # Replica text columns are VARBINARY.
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8")
    return str(value)


def revision_table(*, filter_by_actor: bool = True) -> str:
    # revision_userindex hides some rows but is indexed on rev_actor.
    return "revision_userindex" if filter_by_actor else "revision"


class ReplicaRepository:
    """Base class with query helpers and user/actor lookups."""

    def __init__(self, replicas: ReplicasClient) -> None:
        self._replicas = replicas

    def _execute(
        self,
        db_name: str,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        timeout: int | None = None,
    ) -> Result:
        return self._replicas.execute(db_name, sql, params, timeout=timeout)

    def _execute_central(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        timeout: int | None = None,
    ) -> Result:
        return self._replicas.execute_named(CENTRALAUTH, sql, params, timeout=timeout)

    def _execute_meta(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        timeout: int | None = None,
    ) -> Result:
        return self._replicas.execute_named(META, sql, params, timeout=timeout)

    # Users ------------------------------------------------------------------

    def get_usernames_from_ids(self, user_ids: Sequence[int]) -> list[str]:
        if not user_ids:
            return []
        # Fast lookup; the statement time limit only slows it down.
        result = self._execute_central(
            "SELECT gu_name FROM globaluser WHERE gu_id IN :user_ids",
            {"user_ids": [int(user_id) for user_id in user_ids]},
            timeout=NO_TIMEOUT,
        )
        return [as_text(name) for name in result.scalars().all()]

    def get_actor_ids_from_usernames(self, db_name: str, usernames: Sequence[str]) -> list[int]:
        if not usernames:
            return []
        result = self._execute(
            db_name,
            f"SELECT actor_id FROM {qualified(db_name, 'actor')} WHERE actor_name IN :usernames",
            {"usernames": list(usernames)},
        )
        return [int(actor_id) for actor_id in result.scalars().all()]


__all__ = ["ReplicaRepository", "as_text", "qualified", "replica_timestamp", "revision_table"]
