"""Domain enumerations and wiki helpers shared by the pipeline layers."""

from __future__ import annotations

from enum import Enum


class Metric(str, Enum):
    """Statistic names recorded for events and event wikis."""

    PARTICIPANTS = "participants"
    NEW_EDITORS = "new-editors"
    RETENTION = "retention"
    EDITS = "edits"
    BYTE_DIFFERENCE = "byte-difference"
    PAGES_CREATED = "pages-created"
    PAGES_IMPROVED = "pages-improved"
    PAGES_CREATED_PAGEVIEWS = "pages-created-pageviews"
    PAGES_IMPROVED_PAGEVIEWS_AVG = "pages-improved-pageviews-avg"
    FILES_UPLOADED = "files-uploaded"
    FILE_USAGE = "file-usage"
    PAGES_USING_FILES = "pages-using-files"
    PAGES_USING_FILES_PAGEVIEWS_AVG = "pages-using-files-pageviews-avg"
    ITEMS_CREATED = "items-created"
    ITEMS_IMPROVED = "items-improved"

    @property
    def offset(self) -> int | None:
        """Metric parameter, in days, or ``None`` when the metric has none."""

        return METRIC_OFFSETS.get(self)


METRIC_OFFSETS: dict[Metric, int] = {
    # Lookback before the event start for counting an account as new.
    Metric.NEW_EDITORS: 14,
    # Days after the event end at which retention is measured.
    Metric.RETENTION: 7,
    # Window of the daily pageviews average.
    Metric.PAGES_IMPROVED_PAGEVIEWS_AVG: 30,
    Metric.PAGES_USING_FILES_PAGEVIEWS_AVG: 30,
}


class JobStatus(int, Enum):
    """Persisted job status values."""

    QUEUED = 0
    STARTED = 1
    FAILED_TIMEOUT = 2
    FAILED_UNKNOWN = 3


class PageKind(str, Enum):
    """Subset of pages requested from a wiki for an event window."""

    ANY = ""
    CREATED = "created"
    EDITED = "edited"
    FILES = "files"


FAMILY_NAMES = ("wikipedia", "commons", "wikidata")
FAMILY_PREFIX = "*."
COMMONS_DB_NAME = "commonswiki_p"
WIKIDATA_DB_NAME = "wikidatawiki_p"
# View counts are not meaningful on these families.
PAGEVIEWS_BLACKLIST = frozenset({"commons", "wikidata"})


def is_family_domain(domain: str | None) -> bool:
    """Return ``True`` for wildcard domains such as ``*.wikipedia``."""

    return domain is not None and domain.startswith(FAMILY_PREFIX)


def family_name(domain: str | None) -> str | None:
    """Return the first known family whose name occurs in ``domain``."""

    if domain is None:
        return None
    for family in FAMILY_NAMES:
        if family in domain:
            return family
    return None


__all__ = [
    "Metric",
    "METRIC_OFFSETS",
    "JobStatus",
    "PageKind",
    "FAMILY_NAMES",
    "FAMILY_PREFIX",
    "COMMONS_DB_NAME",
    "WIKIDATA_DB_NAME",
    "PAGEVIEWS_BLACKLIST",
    "is_family_domain",
    "family_name",
]
