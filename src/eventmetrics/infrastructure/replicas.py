"""Connections to the wiki replica databases.

Replica databases are spread over a fixed set of slices (``s1`` .. ``s8``).
Each thread keeps one long-lived connection per slice, and every wiki database
on the slice is reached through fully qualified table names (``enwiki_p.page``).
The identity (``centralauth_p``) and site matrix (``meta_p``) databases get
their own named connections.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine, Result

from ..exceptions import NotFoundError, handle_replica_errors

logger = logging.getLogger(__name__)

CENTRALAUTH = "centralauth"
META = "meta"
# Disables the statement time limit for a single query.
NO_TIMEOUT = -1

EngineFactory = Callable[[str], Engine]


def _default_engine_factory(url: str) -> Engine:
    return sa.create_engine(url, pool_pre_ping=True, pool_recycle=3600)


def build_statement(sql: str, params: Mapping[str, Any] | None = None) -> sa.TextClause:
    """Return a text clause whose list/tuple/set parameters expand into ``IN`` lists."""

    statement = sa.text(sql)
    expanding = [
        sa.bindparam(name, expanding=True)
        for name, value in (params or {}).items()
        if isinstance(value, (list, tuple, set, frozenset))
    ]
    if expanding:
        statement = statement.bindparams(*expanding)
    return statement


class ReplicasClient:
    """Lazily opens replica connections and executes classified queries."""

    def __init__(
        self,
        *,
        url_template: str,
        slices: Iterable[str],
        named_urls: Mapping[str, str],
        user: str = "",
        password: str = "",
        query_timeout_seconds: int = 300,
        engine_factory: EngineFactory | None = None,
    ) -> None:
        self._url_template = url_template
        self._slices = tuple(slices)
        self._named_urls = dict(named_urls)
        self._user = user
        self._password = password
        self._query_timeout = query_timeout_seconds
        self._engine_factory = engine_factory or _default_engine_factory
        self._engines: dict[str, Engine] = {}
        self._slice_by_db: dict[str, str] = {}
        # Connections are not thread-safe; API requests run pipelines in worker threads.
        self._local = threading.local()
        self._all_connections: list[Connection] = []
        self._lock = threading.Lock()

    @property
    def slices(self) -> tuple[str, ...]:
        return self._slices

    @property
    def query_timeout_seconds(self) -> int:
        return self._query_timeout

    # Connections ------------------------------------------------------------

    def _url_for(self, key: str) -> str:
        if key in self._named_urls:
            return self._named_urls[key]
        return self._url_template.format(user=self._user, password=self._password, slice=key)

    def _engine(self, key: str) -> Engine:
        with self._lock:
            engine = self._engines.get(key)
            if engine is None:
                engine = self._engine_factory(self._url_for(key)).execution_options(
                    isolation_level="AUTOCOMMIT"
                )
                self._engines[key] = engine
            return engine

    @property
    def _connections(self) -> dict[str, Connection]:
        connections = getattr(self._local, "connections", None)
        if connections is None:
            connections = self._local.connections = {}
        return connections

    def _open(self, key: str) -> Connection:
        conn = self._engine(key).connect()
        self._connections[key] = conn
        with self._lock:
            self._all_connections = [open_conn for open_conn in self._all_connections if not open_conn.closed]
            self._all_connections.append(conn)
        return conn

    def connection(self, key: str) -> Connection:
        """Return the calling thread's open connection for a slice or named database."""

        conn = self._connections.get(key)
        if conn is None or conn.closed or conn.invalidated:
            conn = self._open(key)
        return conn

    def slice_for(self, db_name: str) -> str:
        """Return the slice hosting ``db_name`` (``enwiki_p`` or ``enwiki``)."""

        with self._lock:
            cached = self._slice_by_db.get(db_name)
        if cached is None:
            dbname = db_name.removesuffix("_p")
            row = self.execute_named(
                META,
                "SELECT slice FROM wiki WHERE dbname = :dbname",
                {"dbname": dbname},
                timeout=NO_TIMEOUT,
            ).first()
            if row is None or not row[0]:
                raise NotFoundError(f"database '{db_name}' is not hosted on any slice")
            # Values look like ``s1.labsdb``.
            cached = str(row[0]).split(".", 1)[0]
            with self._lock:
                self._slice_by_db[db_name] = cached
        return cached

    def get_connection(self, db_name: str) -> Connection:
        return self.connection(self.slice_for(db_name))

    # Queries ----------------------------------------------------------------

    def timeout_clause(self, timeout: int | None = None) -> str:
        seconds = self._query_timeout if timeout is None else timeout
        if seconds <= 0:
            return ""
        return f"SET STATEMENT max_statement_time = {seconds} FOR\n"

    def _run(self, conn: Connection, sql: str, params: Mapping[str, Any] | None, timeout: int | None) -> Result:
        effective = self._query_timeout if timeout is None else timeout
        statement = build_statement(self.timeout_clause(timeout) + sql, params)
        with handle_replica_errors(timeout=effective):
            return conn.execute(statement, dict(params or {}))

    def execute(
        self,
        db_name: str,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        timeout: int | None = None,
    ) -> Result:
        """Run ``sql`` on the slice hosting ``db_name``."""

        return self._run(self.get_connection(db_name), sql, params, timeout)

    def execute_named(
        self,
        name: str,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        timeout: int | None = None,
    ) -> Result:
        """Run ``sql`` on a named database such as :data:`CENTRALAUTH`."""

        return self._run(self.connection(name), sql, params, timeout)

    # Health -----------------------------------------------------------------

    def _process_count(self, slice_name: str) -> int:
        result = self.execute_named(
            slice_name,
            "SELECT COUNT(*) FROM information_schema.PROCESSLIST",
            timeout=NO_TIMEOUT,
        )
        return int(result.scalar() or 0)

    def count_open_connections(self) -> int:
        """Return the highest process count observed across all slices."""

        return max((self._process_count(slice_name) for slice_name in self._slices), default=0)

    def reconnect(self) -> int:
        """Ping the calling thread's connections and reopen the dead ones.

        Returns the number of connections that had to be reopened.
        """

        reopened = 0
        for key, conn in list(self._connections.items()):
            if not conn.closed and not conn.invalidated:
                try:
                    conn.exec_driver_sql("SELECT 1")
                    continue
                except sa_exc.DBAPIError:
                    logger.warning("replicas.ping.failed", extra={"connection": key})
            conn.close()
            self._open(key)
            reopened += 1
        return reopened

    def close(self) -> None:
        with self._lock:
            connections, self._all_connections = self._all_connections, []
            engines, self._engines = list(self._engines.values()), {}
        for conn in connections:
            conn.close()
        self._connections.clear()
        for engine in engines:
            engine.dispose()


__all__ = [
    "CENTRALAUTH",
    "META",
    "NO_TIMEOUT",
    "ReplicasClient",
    "build_statement",
]
