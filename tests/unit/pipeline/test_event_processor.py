"""Behaviour of :class:`EventProcessor` against in-memory replicas."""

from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from eventmetrics.db.db_models import EventStat, EventWikiStat
from eventmetrics.domain.models import Metric
from eventmetrics.repositories.event_store import EventStore
from eventmetrics.services.event_processor import EventProcessor
from tests.helpers.factories import FEB_1_2017, JAN_1_2017, make_event, make_job
from tests.mocks.replicas import FakeEventData, FakeReplicas, FakeWikiData

NOW = datetime(2026, 6, 1, 12, 0, 0)


def _event_data(**overrides: object) -> FakeEventData:
    data = FakeEventData(
        usernames_by_id={1: "Alice", 2: "Bob"},
        actors={"enwiki_p": {"Alice": 10, "Bob": 11}},
        edit_counts={"enwiki_p": 2},
        common_wikis=["enwiki_p"],
        retained={"enwiki_p": ["Alice"]},
        new_editors=["Alice"],
    )
    for name, value in overrides.items():
        setattr(data, name, value)
    return data


def _wiki_data(**overrides: object) -> FakeWikiData:
    data = FakeWikiData(
        page_ids={("enwiki_p", "created"): [100], ("enwiki_p", "edited"): [100, 200]},
        bytes_changed={"enwiki_p": 500},
        views_per_page=5,
        avg_views_per_page=2,
    )
    for name, value in overrides.items():
        setattr(data, name, value)
    return data


def _processor(
    session: Session,
    events: FakeEventData,
    wikis: FakeWikiData,
    *,
    replicas: FakeReplicas | None = None,
    now: datetime = NOW,
    actor_cache_size: int = 3,
) -> EventProcessor:
    return EventProcessor(
        EventStore(session),
        events,
        wikis,
        replicas or FakeReplicas(),
        actor_cache_size=actor_cache_size,
        clock=lambda: now,
    )


def _stat(event, metric: Metric) -> int | None:
    stat = event.get_statistic(metric)
    return stat.value if stat is not None else None


def _wiki_stat(wiki, metric: Metric) -> int | None:
    stat = wiki.get_statistic(metric)
    return stat.value if stat is not None else None


def test_process_splits_created_and_improved_pages(session: Session) -> None:
    event = make_event(session)
    wiki = event.wikis[0]

    _processor(session, _event_data(), _wiki_data()).process(event)

    assert _stat(event, Metric.PAGES_CREATED) == 1
    assert _stat(event, Metric.PAGES_IMPROVED) == 1
    assert _stat(event, Metric.EDITS) == 2
    assert _stat(event, Metric.BYTE_DIFFERENCE) == 500
    assert wiki.pages_created == [100]
    assert wiki.pages_improved == [200]
    assert set(wiki.pages_created).isdisjoint(wiki.pages_improved)
    assert _wiki_stat(wiki, Metric.PAGES_CREATED) == 1
    assert _wiki_stat(wiki, Metric.PAGES_IMPROVED) == 1
    assert _wiki_stat(wiki, Metric.EDITS) == 2


def test_process_counts_edits_over_created_and_edited_pages(session: Session) -> None:
    event = make_event(session)
    events = _event_data()

    _processor(session, events, _wiki_data()).process(event)

    [(db_name, page_ids, start, end, actors)] = events.called("get_total_edit_count")
    assert db_name == "enwiki_p"
    assert page_ids == (100, 100, 200)
    assert (start, end) == (JAN_1_2017, FEB_1_2017)
    assert actors == (10, 11)


def test_process_records_participants_new_editors_and_retention(session: Session) -> None:
    event = make_event(session)

    _processor(session, _event_data(), _wiki_data()).process(event)

    assert _stat(event, Metric.PARTICIPANTS) == 2
    assert _stat(event, Metric.NEW_EDITORS) == 1
    assert event.get_statistic(Metric.NEW_EDITORS).offset == 14
    assert _stat(event, Metric.RETENTION) == 1
    assert event.get_statistic(Metric.RETENTION).offset == 7


def test_process_looks_back_two_weeks_for_new_editors(session: Session) -> None:
    event = make_event(session)
    events = _event_data()

    _processor(session, events, _wiki_data()).process(event)

    [(usernames, lookback_start, end)] = events.called("get_new_editors")
    assert usernames == ("Alice", "Bob")
    assert lookback_start == datetime(2016, 12, 18)
    assert end == FEB_1_2017


def test_process_records_pageviews(session: Session) -> None:
    event = make_event(session)
    wiki = event.wikis[0]

    _processor(session, _event_data(), _wiki_data()).process(event)

    assert _wiki_stat(wiki, Metric.PAGES_CREATED_PAGEVIEWS) == 5
    assert _wiki_stat(wiki, Metric.PAGES_IMPROVED_PAGEVIEWS_AVG) == 2
    assert _stat(event, Metric.PAGES_CREATED_PAGEVIEWS) == 5
    assert _stat(event, Metric.PAGES_IMPROVED_PAGEVIEWS_AVG) == 2
    assert _stat(event, Metric.PAGES_USING_FILES_PAGEVIEWS_AVG) == 0


def test_process_sums_pageviews_of_pages_using_files(session: Session) -> None:
    event = make_event(session, wikis=("commons.wikimedia",))
    events = _event_data(
        actors={"commonswiki_p": {"Alice": 3}},
        used_files={"commonswiki_p": 2},
        pages_using_files={"commonswiki_p": [("enwiki_p", 1), ("enwiki_p", 2), ("gonewiki_p", 3)]},
    )
    wikis = _wiki_data(
        db_names={"commons.wikimedia": "commonswiki_p"},
        page_ids={("commonswiki_p", "files"): [7, 8, 9]},
        domains={"enwiki_p": "en.wikipedia"},
        avg_views_per_page=4,
    )

    _processor(session, events, wikis).process(event)

    wiki = event.wikis[0]
    assert _wiki_stat(wiki, Metric.FILES_UPLOADED) == 3
    assert _wiki_stat(wiki, Metric.FILE_USAGE) == 2
    assert _wiki_stat(wiki, Metric.PAGES_USING_FILES) == 3
    assert wiki.pages_files == [7, 8, 9]
    assert _stat(event, Metric.FILES_UPLOADED) == 3
    assert _stat(event, Metric.PAGES_USING_FILES_PAGEVIEWS_AVG) == 8
    # Commons itself has no meaningful views.
    assert _wiki_stat(wiki, Metric.PAGES_CREATED_PAGEVIEWS) is None


def test_rerunning_overwrites_statistics_without_duplicates(session: Session) -> None:
    event = make_event(session)
    events = _event_data()
    wikis = _wiki_data()

    _processor(session, events, wikis).process(event)
    event_rows = session.scalar(select(func.count()).select_from(EventStat))
    wiki_rows = session.scalar(select(func.count()).select_from(EventWikiStat))

    wikis.page_ids[("enwiki_p", "created")] = [100, 300]
    _processor(session, events, wikis).process(event)

    assert session.scalar(select(func.count()).select_from(EventStat)) == event_rows
    assert session.scalar(select(func.count()).select_from(EventWikiStat)) == wiki_rows
    assert _stat(event, Metric.PAGES_CREATED) == 2


def test_retention_before_window_closes_equals_new_editors(session: Session) -> None:
    event = make_event(session)
    events = _event_data(new_editors=["Alice", "Bob"])

    _processor(session, events, _wiki_data(), now=datetime(2017, 2, 3)).process(event)

    assert _stat(event, Metric.RETENTION) == 2
    assert events.called("get_common_wikis") == []


def test_retention_never_exceeds_new_editors(session: Session) -> None:
    event = make_event(session)
    events = _event_data(new_editors=["Alice"], retained={"enwiki_p": ["Alice", "Bob"]})

    _processor(session, events, _wiki_data()).process(event)

    assert _stat(event, Metric.RETENTION) == 1


def test_retention_stops_once_every_editor_is_retained(session: Session) -> None:
    event = make_event(session)
    events = _event_data(
        actors={"dewiki_p": {"Alice": 1}, "enwiki_p": {"Alice": 10, "Bob": 11}, "frwiki_p": {"Alice": 2}},
        common_wikis=["frwiki_p", "dewiki_p", "enwiki_p"],
        retained={"dewiki_p": ["Alice"]},
    )
    visited: list[str] = []

    _processor(session, events, _wiki_data()).process(event, on_progress=visited.append)

    assert visited == ["dewiki_p"]
    assert [args[0] for args in events.called("get_users_retained")] == ["dewiki_p"]
    assert _stat(event, Metric.RETENTION) == 1


def test_retention_skips_wikis_where_editors_have_no_account(session: Session) -> None:
    event = make_event(session)
    events = _event_data(
        actors={"enwiki_p": {"Alice": 10, "Bob": 11}, "frwiki_p": {"Alice": 2}},
        common_wikis=["dewiki_p", "frwiki_p"],
        retained={"dewiki_p": ["Alice"], "frwiki_p": ["Alice"]},
    )
    visited: list[str] = []

    _processor(session, events, _wiki_data()).process(event, on_progress=visited.append)

    assert visited == ["dewiki_p", "frwiki_p"]
    assert [args[0] for args in events.called("get_users_retained")] == ["frwiki_p"]
    assert _stat(event, Metric.RETENTION) == 1


def test_family_wikis_are_expanded_and_empty_ones_removed(session: Session) -> None:
    event = make_event(session, wikis=("*.wikipedia",))
    events = _event_data(family_domains={"wikipedia": ["en.wikipedia", "fr.wikipedia"]})

    _processor(session, events, _wiki_data()).process(event)

    assert [wiki.domain for wiki in event.wikis] == ["*.wikipedia", "en.wikipedia"]
    assert _stat(event, Metric.PAGES_CREATED) == 1
    assert ("get_common_lang_wiki_domains", (("Alice", "Bob"), "wikipedia")) in events.calls


def test_family_wiki_without_participants_stays_empty(session: Session) -> None:
    event = make_event(session, wikis=("*.wikipedia",), participant_ids=(), categories=(("Foo", "en.wikipedia"),))

    _processor(session, _event_data(usernames_by_id={}), _wiki_data()).process(event)

    assert [wiki.domain for wiki in event.wikis] == ["*.wikipedia"]


def test_wikidata_only_event_reports_items(session: Session) -> None:
    event = make_event(session, wikis=("www.wikidata",))
    events = _event_data(actors={"wikidatawiki_p": {"Alice": 5}}, edit_counts={"wikidatawiki_p": 9})
    wikis = _wiki_data(
        page_ids={("wikidatawiki_p", "created"): [1, 2], ("wikidatawiki_p", "edited"): [2, 3, 3]},
    )

    _processor(session, events, wikis).process(event)

    wiki = event.wikis[0]
    assert _wiki_stat(wiki, Metric.ITEMS_CREATED) == 2
    assert _wiki_stat(wiki, Metric.ITEMS_IMPROVED) == 1
    assert _wiki_stat(wiki, Metric.EDITS) == 9
    assert _stat(event, Metric.ITEMS_CREATED) == 2
    assert _stat(event, Metric.ITEMS_IMPROVED) == 1
    assert event.get_statistic(Metric.EDITS) is None
    assert event.get_statistic(Metric.PAGES_CREATED) is None
    assert _wiki_stat(wiki, Metric.FILES_UPLOADED) is None


def test_category_events_use_implicit_editors(session: Session) -> None:
    event = make_event(session, participant_ids=(), categories=(("Foo bar", "en.wikipedia"),))
    events = _event_data(usernames_by_id={}, new_editors=["Carol"])
    wikis = _wiki_data(page_editors={"enwiki_p": ["Carol", "Dave", "Carol"]})

    _processor(session, events, wikis).process(event)

    created_calls = [args for args in wikis.called("get_page_ids") if args[5] == "created"]
    assert created_calls[0][3] == ()
    assert created_calls[0][4] == ("Foo_bar",)
    assert _stat(event, Metric.PARTICIPANTS) == 2
    assert events.called("get_new_editors")[0][0] == ("Carol", "Dave")
    assert _stat(event, Metric.NEW_EDITORS) == 1


def test_no_participants_means_no_new_editors(session: Session) -> None:
    event = make_event(session, participant_ids=(), categories=(("Foo", "de.wikipedia"),))
    events = _event_data(usernames_by_id={})

    _processor(session, events, _wiki_data()).process(event)

    assert _stat(event, Metric.PARTICIPANTS) == 0
    assert _stat(event, Metric.NEW_EDITORS) == 0
    assert _stat(event, Metric.RETENTION) == 0
    assert events.called("get_new_editors") == []


def test_process_clears_job_and_stamps_update(session: Session) -> None:
    event = make_event(session)
    make_job(session, event)

    _processor(session, _event_data(), _wiki_data()).process(event)

    assert event.jobs == []
    assert event.updated == NOW


def test_process_reconnects_replicas_after_pageviews(session: Session) -> None:
    event = make_event(session)
    replicas = FakeReplicas()

    _processor(session, _event_data(), _wiki_data(), replicas=replicas).process(event)

    assert replicas.reconnects == 1


def test_actor_lookups_are_cached_per_run(session: Session) -> None:
    event = make_event(session)
    events = _event_data()

    _processor(session, events, _wiki_data()).process(event)

    enwiki_lookups = [args for args in events.called("get_actor_ids_from_usernames") if args[0] == "enwiki_p"]
    # Once for contributions, once more while measuring retention.
    assert len(enwiki_lookups) == 2


def test_errors_propagate_and_keep_the_job(session: Session) -> None:
    event = make_event(session)
    make_job(session, event)
    events = _event_data()
    processor = _processor(session, events, _wiki_data())
    events.fail_with = RuntimeError("replica gone")

    with pytest.raises(RuntimeError, match="replica gone"):
        processor.process(event)

    assert len(event.jobs) == 1
