"""Application database models and utilities."""

from .db_models import (
    Base,
    Event,
    EventCategory,
    EventStat,
    EventWiki,
    EventWikiStat,
    Job,
    Participant,
)

__all__ = [
    "Base",
    "Event",
    "EventCategory",
    "EventStat",
    "EventWiki",
    "EventWikiStat",
    "Job",
    "Participant",
]
