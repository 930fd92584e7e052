"""Connection routing and query helpers of :class:`ReplicasClient`, on SQLite."""

from __future__ import annotations

import threading

import pytest
import sqlalchemy as sa
from sqlalchemy import exc as sa_exc
from sqlalchemy.pool import StaticPool

from eventmetrics.exceptions import NotFoundError
from eventmetrics.infrastructure.replicas import CENTRALAUTH, META, NO_TIMEOUT, ReplicasClient, build_statement


def _memory_engine(*statements: str) -> sa.Engine:
    engine = sa.create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        for statement in statements:
            conn.exec_driver_sql(statement)
    return engine


@pytest.fixture
def engines() -> dict[str, sa.Engine]:
    return {
        "meta://": _memory_engine(
            "CREATE TABLE wiki (dbname TEXT, slice TEXT)",
            "INSERT INTO wiki VALUES ('enwiki', 's1.labsdb'), ('dewiki', 's5.labsdb'), ('oldwiki', '')",
        ),
        "centralauth://": _memory_engine("CREATE TABLE globaluser (gu_id INTEGER, gu_name TEXT)"),
        "slice://s1": _memory_engine(
            "CREATE TABLE page (page_id INTEGER)",
            "INSERT INTO page VALUES (1), (2), (3)",
        ),
        "slice://s5": _memory_engine(),
    }


@pytest.fixture
def client(engines: dict[str, sa.Engine]) -> ReplicasClient:
    return ReplicasClient(
        url_template="slice://{slice}",
        slices=["s1", "s5"],
        named_urls={META: "meta://", CENTRALAUTH: "centralauth://"},
        query_timeout_seconds=0,
        engine_factory=engines.__getitem__,
    )


def test_timeout_clause() -> None:
    client = ReplicasClient(url_template="", slices=[], named_urls={}, query_timeout_seconds=300)

    assert client.timeout_clause() == "SET STATEMENT max_statement_time = 300 FOR\n"
    assert client.timeout_clause(60) == "SET STATEMENT max_statement_time = 60 FOR\n"
    assert client.timeout_clause(NO_TIMEOUT) == ""


def test_build_statement_expands_sequences() -> None:
    statement = build_statement("SELECT 1 WHERE a IN :ids AND b = :name", {"ids": [1, 2], "name": "x"})

    assert statement._bindparams["ids"].expanding
    assert not statement._bindparams["name"].expanding


def test_slice_for_strips_suffix_and_caches(client: ReplicasClient, monkeypatch: pytest.MonkeyPatch) -> None:
    assert client.slice_for("enwiki_p") == "s1"
    assert client.slice_for("dewiki") == "s5"

    def unexpected_query(*args, **kwargs):
        raise AssertionError("slice lookup should be cached")

    monkeypatch.setattr(client, "execute_named", unexpected_query)

    assert client.slice_for("enwiki_p") == "s1"


def test_slice_for_unknown_database(client: ReplicasClient) -> None:
    with pytest.raises(NotFoundError):
        client.slice_for("nowiki_p")
    with pytest.raises(NotFoundError):
        client.slice_for("oldwiki_p")


def test_execute_routes_to_slice_and_expands_lists(client: ReplicasClient) -> None:
    result = client.execute("enwiki_p", "SELECT COUNT(*) FROM page WHERE page_id IN :ids", {"ids": [1, 3, 9]})

    assert result.scalar() == 2


def test_execute_shares_one_connection_per_slice(client: ReplicasClient) -> None:
    client.execute("enwiki_p", "SELECT 1")

    assert client.connection("s1") is client.get_connection("enwiki_p")


def test_unclassified_errors_propagate(client: ReplicasClient) -> None:
    with pytest.raises(sa_exc.OperationalError):
        client.execute_named(CENTRALAUTH, "SELECT * FROM missing_table")


def test_count_open_connections_takes_busiest_slice(
    client: ReplicasClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    counts = {"s1": 4, "s5": 7}
    monkeypatch.setattr(client, "_process_count", counts.__getitem__)

    assert client.count_open_connections() == 7


def test_reconnect_reopens_closed_connections(client: ReplicasClient) -> None:
    healthy = client.connection(CENTRALAUTH)
    client.connection("s1").close()

    assert client.reconnect() == 1
    assert client.connection(CENTRALAUTH) is healthy
    assert not client.connection("s1").closed


def test_close_drops_connections(client: ReplicasClient) -> None:
    conn = client.connection(META)
    client.close()

    assert conn.closed


def test_connections_are_private_to_each_thread(client: ReplicasClient) -> None:
    main_conn = client.connection("s1")
    seen: list[sa.Connection] = []

    def worker() -> None:
        seen.append(client.connection("s1"))
        seen.append(client.connection("s1"))

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()

    assert seen[0] is seen[1]
    assert seen[0] is not main_conn
    assert client.connection("s1") is main_conn


def test_close_reaches_connections_of_other_threads(client: ReplicasClient) -> None:
    opened: list[sa.Connection] = []
    thread = threading.Thread(target=lambda: opened.append(client.connection(CENTRALAUTH)))
    thread.start()
    thread.join()

    client.close()

    assert opened[0].closed
