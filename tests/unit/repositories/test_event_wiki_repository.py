from __future__ import annotations

from datetime import date, datetime

import pytest

from eventmetrics.domain.models import PageKind
from eventmetrics.exceptions import UnknownDomainError
from eventmetrics.infrastructure.replicas import META
from eventmetrics.repositories.event_wiki_repository import EventWikiRepository
from tests.mocks.replicas import FakeReplicas

START = datetime(2017, 1, 1)
END = datetime(2017, 2, 1)


def test_page_ids_need_participants_or_categories(
    wiki_repository: EventWikiRepository, replicas: FakeReplicas
) -> None:
    assert wiki_repository.get_page_ids("enwiki_p", START, END, (), (), PageKind.CREATED) == []
    assert wiki_repository.get_page_ids("enwiki_p", START, END, (), ("Foo",), PageKind.FILES) == []
    assert replicas.queries == []


def test_created_pages_of_participants(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    replicas.on("SELECT DISTINCT rev_page", [(5,), (8,)])

    page_ids = wiki_repository.get_page_ids("enwiki_p", START, END, [10, 11], (), PageKind.CREATED)

    assert page_ids == [5, 8]
    [query] = replicas.queries
    assert query.target == "enwiki_p"
    assert "enwiki_p.revision_userindex" in query.sql
    assert "page_namespace = 0" in query.sql
    assert "rev_parent_id = 0" in query.sql
    assert "categorylinks" not in query.sql
    assert query.sql.endswith("LIMIT 50000")
    assert query.params == {"start": "20170101000000", "end": "20170201000000", "actors": [10, 11]}


def test_edited_pages_in_categories(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    wiki_repository.get_page_ids("enwiki_p", START, END, (), ["Foo_bar"], "edited")

    [query] = replicas.queries
    assert "enwiki_p.revision JOIN" in query.sql
    assert "JOIN enwiki_p.categorylinks ON cl_from = rev_page" in query.sql
    assert "rev_parent_id != 0" in query.sql
    assert "rev_actor" not in query.sql
    assert query.params["category_titles"] == ["Foo_bar"]


def test_local_files_ignore_categories(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    wiki_repository.get_page_ids("enwiki_p", START, END, [10], ["Foo"], PageKind.FILES)

    [query] = replicas.queries
    assert "page_namespace = 6" in query.sql
    assert "categorylinks" not in query.sql


def test_commons_files_may_use_categories(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    wiki_repository.get_page_ids("commonswiki_p", START, END, (), ["Foo"], PageKind.FILES)

    [query] = replicas.queries
    assert "commonswiki_p.categorylinks" in query.sql
    assert "page_namespace = 6" in query.sql


def test_database_names_are_validated(wiki_repository: EventWikiRepository) -> None:
    with pytest.raises(ValueError):
        wiki_repository.get_page_ids("enwiki_p; DROP TABLE page", START, END, [1], (), PageKind.CREATED)


def test_db_name_from_domain_is_memoised(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    replicas.on("CONCAT(dbname, '_p')", [("enwiki_p",)])

    assert wiki_repository.get_db_name_from_domain("en.wikipedia") == "enwiki_p"
    assert wiki_repository.get_db_name_from_domain("en.wikipedia") == "enwiki_p"

    [query] = replicas.queries
    assert query.target == META
    assert query.params == {"project_url": "https://en.wikipedia.org"}


def test_unknown_domain(wiki_repository: EventWikiRepository) -> None:
    with pytest.raises(UnknownDomainError, match="xx.wikipedia"):
        wiki_repository.get_db_name_from_domain("xx.wikipedia")


def test_domain_from_wiki_input(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    replicas.on(
        "SELECT dbname, url FROM wiki",
        lambda params: [("enwiki", "https://en.wikipedia.org")] if params["project"] == "enwiki" else [],
    )
    replicas.on("SELECT family FROM wiki", lambda params: [(params["family"],)] if params["family"] == "wikipedia" else [])

    assert wiki_repository.get_domain_from_wiki_input("enwiki_p") == "en.wikipedia"
    assert wiki_repository.get_domain_from_wiki_input("*.wikipedia") == "*.wikipedia"
    assert wiki_repository.get_domain_from_wiki_input("*.nosuchfamily") is None
    assert wiki_repository.get_domain_from_wiki_input("nosuchwiki_p") is None


def test_page_titles_are_decoded(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    replicas.on("SELECT page_id, page_title", [(1, b"Caf\xc3\xa9"), (2, "Plain")])

    assert wiki_repository.get_page_ids_and_titles("frwiki_p", [1, 2]) == [(1, "Café"), (2, "Plain")]
    assert wiki_repository.get_page_titles("frwiki_p", []) == []


def test_bytes_changed_filters_by_actor(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    replicas.on("SUM(after) - SUM(before_)", [(-120,)])

    assert wiki_repository.get_bytes_changed("enwiki_p", [1, 2], START, END, [10]) == -120
    assert wiki_repository.get_bytes_changed("enwiki_p", [], START, END) == 0

    [query] = replicas.queries
    assert "cur.rev_actor IN :actors" in query.sql
    assert query.params["page_ids"] == [1, 2]


def test_users_from_page_ids(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    replicas.on("SELECT DISTINCT actor_name", [(b"Alice",), ("Bob",)])

    assert wiki_repository.get_users_from_page_ids("enwiki_p", [1], START, END) == ["Alice", "Bob"]
    assert "actor_user IS NOT NULL" in replicas.queries[0].sql


def test_pageviews_are_requested_in_chunks(wiki_repository: EventWikiRepository, replicas: FakeReplicas, pageviews) -> None:
    replicas.on("SELECT page_id, page_title", [(1, "A"), (2, "B"), (3, "C")])

    total = wiki_repository.get_pageviews("enwiki_p", "en.wikipedia", START, [1, 2, 3])

    assert total == 30
    assert [call[1] for call in pageviews.calls] == [("A", "B"), ("C",)]
    assert pageviews.calls[0][2] == START
    assert pageviews.calls[0][3] == date(2017, 2, 28)


def test_average_pageviews_end_yesterday(wiki_repository: EventWikiRepository, replicas: FakeReplicas, pageviews) -> None:
    replicas.on("SELECT page_id, page_title", [(1, "A")])

    assert wiki_repository.get_pageviews("enwiki_p", "en.wikipedia", START, [1], daily_average=True) == 2
    assert pageviews.calls == [("average", ("A",), 30, date(2017, 3, 1))]


def test_pageviews_of_no_pages(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    assert wiki_repository.get_pageviews("enwiki_p", "en.wikipedia", START, []) == 0
    assert replicas.queries == []


def test_single_page_details_are_cached(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    replicas.on("'creator' AS metric", [("creator", b"Alice"), ("edits", 4), ("bytes", 2048), ("links", 3)])

    first = wiki_repository.get_single_page_created_data("enwiki_p", 1, "Foo", [10], END)
    second = wiki_repository.get_single_page_created_data("enwiki_p", 1, "Foo", [10], END)

    assert first == {"creator": "Alice", "edits": 4, "bytes": 2048, "links": 3}
    assert second == first
    assert len(replicas.queries) == 1
    assert "rev_actor IN :actors" in replicas.queries[0].sql


def test_improved_page_bytes_are_net_change(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    replicas.on("'start_bytes' AS metric", [("edits", 2), ("start_bytes", 100), ("end_bytes", 350)])

    info = wiki_repository.get_single_page_improved_data("enwiki_p", 1, "Foo", (), START, END)

    assert info == {"edits": 2, "links": 0, "bytes": 250}
    assert "rev_actor" not in replicas.queries[0].sql


def test_pages_created_rows(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    replicas.on("CONCAT(dbname, '_p')", [("enwiki_p",)])
    replicas.on("SELECT page_id, page_title", [(1, "Foo")])
    replicas.on("'creator' AS metric", [("creator", "Alice"), ("edits", 4), ("bytes", 2048), ("links", 3)])

    rows = wiki_repository.get_pages_created_data("en.wikipedia", [1], [10], START, END)

    assert rows == [
        {
            "creator": "Alice",
            "edits": 4,
            "bytes": 2048,
            "links": 3,
            "page_title": "Foo",
            "wiki": "en.wikipedia",
            "pageviews": 10,
            "avg_pageviews": 2,
        }
    ]


def test_pages_improved_rows(wiki_repository: EventWikiRepository, replicas: FakeReplicas) -> None:
    replicas.on("CONCAT(dbname, '_p')", [("enwiki_p",)])
    replicas.on("SELECT page_id, page_title", [(1, "Foo")])
    replicas.on("'start_bytes' AS metric", [("edits", 1), ("start_bytes", 10), ("end_bytes", 5), ("links", 7)])

    rows = wiki_repository.get_pages_improved_data("en.wikipedia", [1], [], START, END)

    assert rows == [
        {"edits": 1, "links": 7, "bytes": -5, "page_title": "Foo", "wiki": "en.wikipedia", "avg_pageviews": 2}
    ]
