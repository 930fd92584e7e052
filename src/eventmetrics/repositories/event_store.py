"""Application database access for events and their statistic rows."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.db_models import Event, EventStat, EventWiki, EventWikiStat
from ..domain.models import Metric
from ..exceptions import ensure_found, handle_sqlalchemy_errors


class EventStore:
    """Load events and write statistics within the caller's session."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def get(self, event_id: int) -> Event:
        with handle_sqlalchemy_errors(entity="event"):
            event = self._session.get(Event, event_id)
        return ensure_found(event, entity="event", identifier=event_id)  # type: ignore[return-value]

    def find(self, event_id: int) -> Event | None:
        with handle_sqlalchemy_errors(entity="event"):
            return self._session.get(Event, event_id)

    def list_without_job(self) -> Sequence[Event]:
        stmt = select(Event).where(~Event.jobs.any()).order_by(Event.id)
        with handle_sqlalchemy_errors(entity="event"):
            return list(self._session.scalars(stmt))

    def set_event_stat(self, event: Event, metric: Metric, value: int, offset: int | None = None) -> EventStat:
        """Create or overwrite the (event, metric) row."""

        stat = event.get_statistic(metric)
        if stat is None:
            stat = EventStat(metric=metric.value, value=int(value), offset=offset)
            event.stats.append(stat)
        else:
            stat.value = int(value)
            stat.offset = offset
        return stat

    def set_wiki_stat(
        self, wiki: EventWiki, metric: Metric, value: int, offset: int | None = None
    ) -> EventWikiStat:
        """Create or overwrite the (wiki, metric) row."""

        stat = wiki.get_statistic(metric)
        if stat is None:
            stat = EventWikiStat(metric=metric.value, value=int(value), offset=offset)
            wiki.stats.append(stat)
        else:
            stat.value = int(value)
            stat.offset = offset
        return stat

    def flush(self) -> None:
        with handle_sqlalchemy_errors(entity="event"):
            self._session.commit()


__all__ = ["EventStore"]
