"""SQLAlchemy ORM models for events, their statistics and jobs."""

from __future__ import annotations

import bz2
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import sqlalchemy as sa
from sqlalchemy import DateTime, ForeignKey, Integer, LargeBinary, MetaData, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..domain.jobs import DEFAULT_IDLE_WINDOW, FAILED_STATUSES, BUSY_STATUSES, JobState, is_stale
from ..domain.models import JobStatus, Metric, family_name, is_family_domain


NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in the application DB."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_utc(value: datetime, tz_name: str) -> datetime:
    aware = value.replace(tzinfo=ZoneInfo(tz_name))
    return aware.astimezone(timezone.utc).replace(tzinfo=None)


def encode_page_ids(ids: list[int] | None) -> bytes | None:
    if ids is None:
        return None
    return bz2.compress(",".join(str(int(page_id)) for page_id in ids).encode("ascii"))


def decode_page_ids(blob: bytes | None) -> list[int]:
    if not blob:
        return []
    raw = bz2.decompress(blob).decode("ascii")
    return [int(part) for part in raw.split(",") if part]


class Base(DeclarativeBase):
    """Base class that applies a deterministic naming convention."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class Event(Base):
    """Aggregate root of a statistics run."""

    __tablename__ = "event"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Local wall-clock times in ``timezone``.
    start: Mapped[datetime | None] = mapped_column(DateTime)
    end: Mapped[datetime | None] = mapped_column(DateTime)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    updated: Mapped[datetime | None] = mapped_column(DateTime)

    wikis: Mapped[list["EventWiki"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventWiki.id",
    )
    categories: Mapped[list["EventCategory"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
    )
    participants: Mapped[list["Participant"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
    )
    stats: Mapped[list["EventStat"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
    )
    jobs: Mapped[list["Job"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
    )

    # Dates ----------------------------------------------------------------

    @property
    def start_utc(self) -> datetime:
        if self.start is None:
            raise ValueError(f"event {self.id} has no start date")
        return _to_utc(self.start, self.timezone)

    @property
    def end_utc(self) -> datetime:
        if self.end is None:
            raise ValueError(f"event {self.id} has no end date")
        return _to_utc(self.end, self.timezone)

    def is_valid(self, now: datetime | None = None) -> bool:
        """Whether the event carries enough settings to generate statistics."""

        current = now or utcnow()
        return (
            len(self.wikis) > 0
            and self.start is not None
            and self.end is not None
            and self.start_utc < current
            and (len(self.participants) > 0 or len(self.categories) > 0)
        )

    def is_heavy(self) -> bool:
        """Rough estimate of whether processing should be left to the batch sweep."""

        if self.start is None or self.end is None:
            return False
        hours = (self.end - self.start) / timedelta(hours=1)
        return len(self.categories) * hours > 1 or len(self.participants) * hours > 60 * 24

    # Wikis ----------------------------------------------------------------

    @property
    def family_wikis(self) -> list["EventWiki"]:
        return [wiki for wiki in self.wikis if wiki.is_family_wiki]

    @property
    def orphan_wikis(self) -> list["EventWiki"]:
        """Wikis whose family has no wildcard entry on this event."""

        families = {wiki.family_name for wiki in self.family_wikis}
        return [
            wiki for wiki in self.wikis if wiki.domain is None or wiki.family_name not in families
        ]

    def add_wiki(self, domain: str) -> "EventWiki":
        wiki = EventWiki(domain=domain)
        self.wikis.append(wiki)
        return wiki

    def remove_wiki(self, wiki: "EventWiki") -> None:
        if wiki in self.wikis:
            self.wikis.remove(wiki)

    # Categories and participants -----------------------------------------

    def category_titles_for_wiki(self, wiki: "EventWiki") -> list[str]:
        return [category.underscored_title for category in self.categories if category.domain == wiki.domain]

    @property
    def participant_ids(self) -> list[int]:
        return [participant.user_id for participant in self.participants]

    # Statistics -----------------------------------------------------------

    def get_statistic(self, metric: Metric | str) -> "EventStat | None":
        name = Metric(metric).value
        for stat in self.stats:
            if stat.metric == name:
                return stat
        return None

    # Jobs -----------------------------------------------------------------

    @property
    def job(self) -> "Job | None":
        return self.jobs[0] if self.jobs else None

    def clear_jobs(self) -> None:
        self.jobs.clear()

    def remove_job(self, job: "Job") -> None:
        if job in self.jobs:
            self.jobs.remove(job)

    def stale_jobs(self, *, now: datetime | None = None, idle_window: timedelta = DEFAULT_IDLE_WINDOW) -> list["Job"]:
        current = now or utcnow()
        return [job for job in self.jobs if is_stale(job.submitted, now=current, idle_window=idle_window)]


class EventWiki(Base):
    """A concrete wiki, or a wildcard family placeholder, attached to an event."""

    __tablename__ = "event_wiki"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("event.id", ondelete="CASCADE"), nullable=False, index=True)
    domain: Mapped[str | None] = mapped_column(String(255))
    pages_created_blob: Mapped[bytes | None] = mapped_column("pages_created", LargeBinary)
    pages_improved_blob: Mapped[bytes | None] = mapped_column("pages_improved", LargeBinary)
    pages_files_blob: Mapped[bytes | None] = mapped_column("pages_files", LargeBinary)

    event: Mapped[Event] = relationship(back_populates="wikis")
    stats: Mapped[list["EventWikiStat"]] = relationship(
        back_populates="wiki",
        cascade="all, delete-orphan",
    )

    @property
    def is_family_wiki(self) -> bool:
        return is_family_domain(self.domain)

    @property
    def family_name(self) -> str | None:
        return family_name(self.domain)

    @property
    def is_child_wiki(self) -> bool:
        return not self.is_family_wiki and self not in self.event.orphan_wikis

    @property
    def child_wikis(self) -> list["EventWiki"]:
        """Concrete wikis of this wildcard's family, empty for concrete wikis."""

        if not self.is_family_wiki:
            return []
        family = self.family_name
        return [
            wiki
            for wiki in self.event.wikis
            if wiki.is_child_wiki and wiki.family_name == family and wiki.domain != self.domain
        ]

    @property
    def can_have_files_uploaded(self) -> bool:
        return self.family_name != "wikidata"

    @property
    def pages_created(self) -> list[int]:
        return decode_page_ids(self.pages_created_blob)

    @pages_created.setter
    def pages_created(self, ids: list[int] | None) -> None:
        self.pages_created_blob = encode_page_ids(ids)

    @property
    def pages_improved(self) -> list[int]:
        return decode_page_ids(self.pages_improved_blob)

    @pages_improved.setter
    def pages_improved(self, ids: list[int] | None) -> None:
        self.pages_improved_blob = encode_page_ids(ids)

    @property
    def pages_files(self) -> list[int]:
        return decode_page_ids(self.pages_files_blob)

    @pages_files.setter
    def pages_files(self, ids: list[int] | None) -> None:
        self.pages_files_blob = encode_page_ids(ids)

    @property
    def pages(self) -> list[int]:
        return self.pages_created + self.pages_improved

    def get_statistic(self, metric: Metric | str) -> "EventWikiStat | None":
        name = Metric(metric).value
        for stat in self.stats:
            if stat.metric == name:
                return stat
        return None

    def statistics_sum(self) -> int:
        return sum(stat.value for stat in self.stats)


class EventCategory(Base):
    __tablename__ = "event_category"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("event.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False)

    event: Mapped[Event] = relationship(back_populates="categories")

    @property
    def underscored_title(self) -> str:
        return self.title.replace(" ", "_")


class Participant(Base):
    __tablename__ = "participant"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("event.id", ondelete="CASCADE"), nullable=False, index=True)
    # Global (centralauth) user ID.
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    event: Mapped[Event] = relationship(back_populates="participants")


class EventStat(Base):
    __tablename__ = "event_stat"
    __table_args__ = (UniqueConstraint("event_id", "metric", name="uq_event_stat_event_metric"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("event.id", ondelete="CASCADE"), nullable=False, index=True)
    metric: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    offset: Mapped[int | None] = mapped_column("offset", Integer)

    event: Mapped[Event] = relationship(back_populates="stats")


class EventWikiStat(Base):
    __tablename__ = "event_wiki_stat"
    __table_args__ = (UniqueConstraint("event_wiki_id", "metric", name="uq_event_wiki_stat_wiki_metric"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_wiki_id: Mapped[int] = mapped_column(
        ForeignKey("event_wiki.id", ondelete="CASCADE"), nullable=False, index=True
    )
    metric: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    offset: Mapped[int | None] = mapped_column("offset", Integer)

    wiki: Mapped[EventWiki] = relationship(back_populates="stats")


class Job(Base):
    """Outstanding request to compute statistics for one event."""

    __tablename__ = "job"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        ForeignKey("event.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    submitted: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    status: Mapped[JobStatus] = mapped_column(
        sa.Enum(JobStatus, name="job_status", native_enum=False, length=16),
        nullable=False,
        default=JobStatus.QUEUED,
    )

    event: Mapped[Event] = relationship(back_populates="jobs")

    def __init__(self, **kwargs: object) -> None:
        kwargs.setdefault("status", JobStatus.QUEUED)
        kwargs.setdefault("submitted", utcnow())
        super().__init__(**kwargs)

    @property
    def state(self) -> JobState:
        return JobState.from_status(self.status)

    @property
    def is_busy(self) -> bool:
        return self.status in BUSY_STATUSES

    @property
    def has_failed(self) -> bool:
        return self.status in FAILED_STATUSES


__all__ = [
    "Base",
    "Event",
    "EventWiki",
    "EventCategory",
    "Participant",
    "EventStat",
    "EventWikiStat",
    "Job",
    "utcnow",
    "encode_page_ids",
    "decode_page_ids",
]
