"""Metrics, job lifecycle rules and wiki family helpers."""

from .jobs import JobState, StaleVerdict, ensure_transition, judge_stale_job
from .models import JobStatus, Metric, PageKind, family_name, is_family_domain

__all__ = [
    "JobState",
    "JobStatus",
    "Metric",
    "PageKind",
    "StaleVerdict",
    "ensure_transition",
    "family_name",
    "is_family_domain",
    "judge_stale_job",
]
