"""Statistics engine computing and persisting every metric of an event.

A run walks a fixed sequence of stages. State shared between stages lives
in a :class:`RunContext` created for each :meth:`EventProcessor.process`
call, so concurrent runs never see each other's totals or caches.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from ..db.db_models import Event, EventWiki, utcnow
from ..domain.models import PAGEVIEWS_BLACKLIST, WIKIDATA_DB_NAME, Metric, PageKind
from ..repositories.event_store import EventStore
from ..repositories.interfaces import EventDataSource, EventWikiDataSource, ReplicaConnections

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[str], None]

DEFAULT_ACTOR_CACHE_SIZE = 3

# Running totals persisted as event stats when a non-Wikidata wiki contributed.
CONTRIBUTION_METRICS = (
    Metric.EDITS,
    Metric.PAGES_CREATED,
    Metric.PAGES_IMPROVED,
    Metric.BYTE_DIFFERENCE,
    Metric.FILES_UPLOADED,
    Metric.FILE_USAGE,
    Metric.PAGES_USING_FILES,
)


@dataclass(slots=True)
class RunContext:
    """Mutable state of one pipeline run."""

    event: Event
    participant_names: list[str]
    on_progress: ProgressCallback | None = None
    totals: dict[Metric, int] = field(default_factory=lambda: dict.fromkeys(CONTRIBUTION_METRICS, 0))
    save_event_stats: bool = False
    # Usernames in first-seen order.
    implicit_editors: dict[str, None] = field(default_factory=dict)
    new_editors: list[str] | None = None
    pages_using_files: list[tuple[str, int]] = field(default_factory=list)
    actor_ids: OrderedDict[str, list[int]] = field(default_factory=OrderedDict)

    def add(self, metric: Metric, value: int) -> None:
        self.totals[metric] += int(value)

    @property
    def usernames(self) -> list[str]:
        """Explicit participants, or the implicit editors when there are none."""

        return self.participant_names or list(self.implicit_editors)


@dataclass(slots=True, frozen=True)
class PageIdsAndEdits:
    created: list[int]
    improved: list[int]
    edits: int


class EventProcessor:
    """Generate statistics for events, overwriting previous values."""

    def __init__(
        self,
        store: EventStore,
        event_repository: EventDataSource,
        wiki_repository: EventWikiDataSource,
        replicas: ReplicaConnections,
        *,
        actor_cache_size: int = DEFAULT_ACTOR_CACHE_SIZE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._events = event_repository
        self._wikis = wiki_repository
        self._replicas = replicas
        self._actor_cache_size = max(1, actor_cache_size)
        self._clock = clock or utcnow

    def process(self, event: Event, on_progress: ProgressCallback | None = None) -> None:
        """Compute and persist all statistics of ``event``, then clear its job.

        ``on_progress`` receives each database name visited while measuring
        retention. Errors propagate unchanged; rows already written stay
        until the next run overwrites them.
        """

        with structlog.contextvars.bound_contextvars(event_id=event.id):
            logger.info("event_processor.run.started")
            started = time.perf_counter()
            ctx = RunContext(
                event=event,
                participant_names=self._events.get_usernames_from_ids(event.participant_ids),
                on_progress=on_progress,
            )

            with self._stage("family_wikis"):
                self._create_family_wikis(ctx)
            with self._stage("contributions"):
                self._set_contribution_stats(ctx)
            # Page IDs are only known once contributions are computed.
            with self._stage("pageviews"):
                self._set_pageviews_stats(ctx)
            # Pageviews may take long enough for idle replica connections to drop.
            with self._stage("reconnect"):
                reopened = self._replicas.reconnect()
                if reopened:
                    logger.info("event_processor.replicas.reconnected", count=reopened)
            with self._stage("family_cleanup"):
                self._remove_empty_family_wikis(ctx)
            with self._stage("participants"):
                self._set_participants(ctx)
            with self._stage("new_editors"):
                self._set_new_editors(ctx)
            with self._stage("retention"):
                self._set_retention(ctx)

            event.clear_jobs()
            event.updated = self._clock()
            self._store.flush()
            logger.info(
                "event_processor.run.completed",
                duration_ms=round((time.perf_counter() - started) * 1000),
            )

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        logger.debug("event_processor.stage.started", stage=name)
        yield
        logger.info(
            "event_processor.stage.completed",
            stage=name,
            duration_ms=round((time.perf_counter() - started) * 1000),
        )

    # Family wikis -----------------------------------------------------------

    def _create_family_wikis(self, ctx: RunContext) -> None:
        """Add a concrete wiki for each family member the participants edited on."""

        event = ctx.event
        for family_wiki in event.family_wikis:
            family = family_wiki.family_name
            if family is None:
                continue
            domains = self._events.get_common_lang_wiki_domains(ctx.participant_names, family)
            existing = {wiki.domain for wiki in event.wikis}
            for domain in domains:
                if domain in existing:
                    continue
                # Kept only if it ends up with statistics.
                event.add_wiki(domain)
                existing.add(domain)
                logger.debug("event_processor.family_wiki.added", family=family, wiki=domain)

    def _remove_empty_family_wikis(self, ctx: RunContext) -> None:
        event = ctx.event
        for family_wiki in event.family_wikis:
            for wiki in family_wiki.child_wikis:
                if wiki.statistics_sum() == 0:
                    event.remove_wiki(wiki)
                    logger.debug("event_processor.family_wiki.removed", wiki=wiki.domain)

    # Contributions ----------------------------------------------------------

    def _set_contribution_stats(self, ctx: RunContext) -> None:
        for wiki in list(ctx.event.wikis):
            if wiki.is_family_wiki:
                continue

            family = wiki.family_name
            if family == "commons":
                self._set_files_uploaded(ctx, wiki)
                ctx.save_event_stats = True
            elif family == "wikidata":
                self._set_wikidata_items(ctx, wiki)
            else:
                self._set_text_wiki_contributions(ctx, wiki)
                self._set_files_uploaded(ctx, wiki)
                ctx.save_event_stats = True

            self._set_user_counts(ctx, wiki)

        # Wikidata-only events report item counts instead.
        if ctx.save_event_stats:
            for metric in CONTRIBUTION_METRICS:
                self._store.set_event_stat(ctx.event, metric, ctx.totals[metric])

        logger.info(
            "event_processor.contributions.totals",
            **{metric.value: value for metric, value in ctx.totals.items()},
        )

    def _set_text_wiki_contributions(self, ctx: RunContext, wiki: EventWiki) -> None:
        event = ctx.event
        db_name = self._wikis.get_db_name_from_domain(wiki.domain)
        result = self._page_ids_and_edits(ctx, wiki, db_name)

        diff = self._wikis.get_bytes_changed(
            db_name,
            result.created + result.improved,
            event.start_utc,
            event.end_utc,
            self._actor_ids(ctx, db_name),
        )

        ctx.add(Metric.PAGES_CREATED, len(result.created))
        ctx.add(Metric.PAGES_IMPROVED, len(result.improved))
        ctx.add(Metric.BYTE_DIFFERENCE, diff)

        self._store.set_wiki_stat(wiki, Metric.EDITS, result.edits)
        self._store.set_wiki_stat(wiki, Metric.PAGES_CREATED, len(result.created))
        self._store.set_wiki_stat(wiki, Metric.PAGES_IMPROVED, len(result.improved))
        self._store.set_wiki_stat(wiki, Metric.BYTE_DIFFERENCE, diff)
        logger.info(
            "event_processor.wiki.contributions",
            wiki=wiki.domain,
            pages_created=len(result.created),
            pages_improved=len(result.improved),
            edits=result.edits,
            byte_difference=diff,
        )

    def _set_wikidata_items(self, ctx: RunContext, wiki: EventWiki) -> None:
        result = self._page_ids_and_edits(ctx, wiki, WIKIDATA_DB_NAME)

        self._store.set_wiki_stat(wiki, Metric.ITEMS_CREATED, len(result.created))
        self._store.set_wiki_stat(wiki, Metric.ITEMS_IMPROVED, len(result.improved))
        self._store.set_wiki_stat(wiki, Metric.EDITS, result.edits)
        # There is only ever one Wikidata.
        self._store.set_event_stat(ctx.event, Metric.ITEMS_CREATED, len(result.created))
        self._store.set_event_stat(ctx.event, Metric.ITEMS_IMPROVED, len(result.improved))

    def _page_ids_and_edits(self, ctx: RunContext, wiki: EventWiki, db_name: str) -> PageIdsAndEdits:
        """Split touched pages into created and improved, and count edits to them.

        Both sets are stored on ``wiki``.
        """

        event = ctx.event
        start, end = event.start_utc, event.end_utc
        actors = self._actor_ids(ctx, db_name)
        categories = event.category_titles_for_wiki(wiki)

        created = self._wikis.get_page_ids(db_name, start, end, actors, categories, PageKind.CREATED)
        edited = self._wikis.get_page_ids(db_name, start, end, actors, categories, PageKind.EDITED)
        created_set = set(created)
        improved = [page_id for page_id in dict.fromkeys(edited) if page_id not in created_set]

        edits = self._events.get_total_edit_count(db_name, created + edited, start, end, actors)
        ctx.add(Metric.EDITS, edits)

        wiki.pages_created = created
        wiki.pages_improved = improved
        return PageIdsAndEdits(created=created, improved=improved, edits=edits)

    def _set_files_uploaded(self, ctx: RunContext, wiki: EventWiki) -> None:
        if not wiki.can_have_files_uploaded:
            logger.debug("event_processor.files.skipped", wiki=wiki.domain)
            return

        event = ctx.event
        db_name = self._wikis.get_db_name_from_domain(wiki.domain)
        page_ids = self._wikis.get_page_ids(
            db_name,
            event.start_utc,
            event.end_utc,
            self._actor_ids(ctx, db_name),
            event.category_titles_for_wiki(wiki),
            PageKind.FILES,
        )
        self._store.set_wiki_stat(wiki, Metric.FILES_UPLOADED, len(page_ids))
        wiki.pages_files = page_ids
        ctx.add(Metric.FILES_UPLOADED, len(page_ids))

        file_usage = self._events.get_used_files(db_name, page_ids)
        self._store.set_wiki_stat(wiki, Metric.FILE_USAGE, file_usage)
        ctx.add(Metric.FILE_USAGE, file_usage)

        pages_using_files = self._events.get_pages_using_files(db_name, page_ids)
        self._store.set_wiki_stat(wiki, Metric.PAGES_USING_FILES, len(pages_using_files))
        ctx.add(Metric.PAGES_USING_FILES, len(pages_using_files))
        ctx.pages_using_files.extend(pages_using_files)

        logger.info(
            "event_processor.wiki.files",
            wiki=wiki.domain,
            files_uploaded=len(page_ids),
            file_usage=file_usage,
            pages_using_files=len(pages_using_files),
        )

    def _set_user_counts(self, ctx: RunContext, wiki: EventWiki) -> None:
        """Collect implicit editors of category-scoped events."""

        page_ids = wiki.pages
        if not page_ids or ctx.participant_names or not ctx.event.categories:
            return
        event = ctx.event
        db_name = self._wikis.get_db_name_from_domain(wiki.domain)
        usernames = self._wikis.get_users_from_page_ids(db_name, page_ids, event.start_utc, event.end_utc)
        ctx.implicit_editors.update(dict.fromkeys(usernames))
        logger.debug("event_processor.wiki.implicit_editors", wiki=wiki.domain, count=len(usernames))

    def _actor_ids(self, ctx: RunContext, db_name: str) -> list[int]:
        """Participants' actor IDs on ``db_name``; users without a local account are omitted."""

        cache = ctx.actor_ids
        if db_name in cache:
            return cache[db_name]
        if len(cache) >= self._actor_cache_size:
            cache.popitem(last=False)
        cache[db_name] = self._events.get_actor_ids_from_usernames(db_name, ctx.participant_names)
        return cache[db_name]

    # Pageviews --------------------------------------------------------------

    def _set_pageviews_stats(self, ctx: RunContext) -> None:
        event = ctx.event
        start = event.start_utc
        created_total = 0
        improved_avg_total = 0

        for wiki in event.wikis:
            if wiki.is_family_wiki or wiki.family_name in PAGEVIEWS_BLACKLIST:
                continue
            db_name = self._wikis.get_db_name_from_domain(wiki.domain)
            created = self._wikis.get_pageviews(db_name, wiki.domain, start, wiki.pages_created)
            improved_avg = self._wikis.get_pageviews(
                db_name, wiki.domain, start, wiki.pages_improved, daily_average=True
            )
            created_total += created
            improved_avg_total += improved_avg

            self._store.set_wiki_stat(wiki, Metric.PAGES_CREATED_PAGEVIEWS, created)
            self._store.set_wiki_stat(wiki, Metric.PAGES_IMPROVED_PAGEVIEWS_AVG, improved_avg)
            logger.info(
                "event_processor.wiki.pageviews",
                wiki=wiki.domain,
                pages_created_pageviews=created,
                pages_improved_pageviews_avg=improved_avg,
            )

        files_avg = self._file_pageviews(ctx, start)

        self._store.set_event_stat(event, Metric.PAGES_CREATED_PAGEVIEWS, created_total)
        self._store.set_event_stat(event, Metric.PAGES_IMPROVED_PAGEVIEWS_AVG, improved_avg_total)
        self._store.set_event_stat(event, Metric.PAGES_USING_FILES_PAGEVIEWS_AVG, files_avg)

    def _file_pageviews(self, ctx: RunContext, start: datetime) -> int:
        """Average daily views of pages embedding uploaded files, across wikis."""

        page_ids_by_db: dict[str, list[int]] = {}
        for db_name, page_id in ctx.pages_using_files:
            page_ids_by_db.setdefault(db_name, []).append(page_id)

        total = 0
        for db_name, page_ids in page_ids_by_db.items():
            domain = self._wikis.get_domain_from_wiki_input(db_name)
            if domain is None:
                # Not on the replicas.
                logger.debug("event_processor.files.unknown_wiki", db_name=db_name)
                continue
            total += self._wikis.get_pageviews(db_name, domain, start, page_ids, daily_average=True)
        return total

    # Participants and retention ---------------------------------------------

    def _set_participants(self, ctx: RunContext) -> None:
        count = len(ctx.usernames)
        self._store.set_event_stat(ctx.event, Metric.PARTICIPANTS, count)
        logger.info("event_processor.participants", count=count)

    def _new_editors(self, ctx: RunContext) -> list[str]:
        if ctx.new_editors is None:
            usernames = ctx.usernames
            lookback = timedelta(days=Metric.NEW_EDITORS.offset or 0)
            ctx.new_editors = (
                self._events.get_new_editors(usernames, ctx.event.start_utc - lookback, ctx.event.end_utc)
                if usernames
                else []
            )
        return ctx.new_editors

    def _set_new_editors(self, ctx: RunContext) -> None:
        count = len(self._new_editors(ctx))
        self._store.set_event_stat(ctx.event, Metric.NEW_EDITORS, count, Metric.NEW_EDITORS.offset)
        logger.info("event_processor.new_editors", count=count)

    def _set_retention(self, ctx: RunContext) -> None:
        offset = Metric.RETENTION.offset or 0
        since = ctx.event.end_utc + timedelta(days=offset)
        usernames = self._new_editors(ctx)

        if since > self._clock():
            # Not falsifiable yet.
            retained = len(usernames)
        else:
            db_names = sorted(self._events.get_common_wikis(usernames))
            retained = self._count_users_retained(ctx, db_names, since, usernames)

        self._store.set_event_stat(ctx.event, Metric.RETENTION, retained, offset)
        logger.info("event_processor.retention", count=retained)

    def _count_users_retained(
        self,
        ctx: RunContext,
        db_names: Sequence[str],
        since: datetime,
        usernames: Sequence[str],
    ) -> int:
        """Count ``usernames`` with an edit after ``since`` on any of ``db_names``.

        Stops scanning as soon as every user has qualified. A user without an
        account on a wiki simply does not qualify there.
        """

        targets = set(usernames)
        retained: set[str] = set()
        for db_name in db_names:
            if ctx.on_progress is not None:
                ctx.on_progress(db_name)
            actors = self._events.get_actor_ids_from_usernames(db_name, usernames)
            if not actors:
                continue
            retained.update(name for name in self._events.get_users_retained(db_name, since, actors) if name in targets)
            if len(retained) == len(targets):
                logger.info("event_processor.retention.short_circuit", wiki=db_name)
                break
        return len(retained)


__all__ = ["EventProcessor", "RunContext", "ProgressCallback", "CONTRIBUTION_METRICS"]
