"""Application settings for the event metrics pipeline.

Every value can be overridden through environment variables prefixed with
``EVENTMETRICS_`` (for example ``EVENTMETRICS_DATABASE_QUOTA=3``). The
defaults target the Toolforge replica layout: one MariaDB host per slice,
plus the ``centralauth_p`` and ``meta_p`` databases for identity and site
matrix lookups.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_REPLICA_SLICES = ("s1", "s2", "s3", "s4", "s5", "s6", "s7", "s8")


class AppConfig(BaseSettings):
    """Pydantic settings container for the pipeline and scheduler."""

    model_config = SettingsConfigDict(env_prefix="EVENTMETRICS_")

    database_url: str = Field(
        default="sqlite:///eventmetrics.db",
        description="Connection string for the application database (events, stats, jobs).",
    )
    replica_url_template: str = Field(
        default="mysql+pymysql://{user}:{password}@{slice}.analytics.db.svc.wikimedia.cloud:3306",
        description="SQLAlchemy URL template for a replica slice; receives user, password and slice.",
    )
    replica_user: str = Field(default="", description="Replica database user.")
    replica_password: str = Field(default="", description="Replica database password.")
    replica_slices: tuple[str, ...] = Field(
        default=DEFAULT_REPLICA_SLICES,
        min_length=1,
        description="Replica slices introspected when measuring open connections.",
    )
    centralauth_url: str = Field(
        default="mysql+pymysql://centralauth.analytics.db.svc.wikimedia.cloud:3306/centralauth_p",
        description="Connection string for the global identity database.",
    )
    meta_url: str = Field(
        default="mysql+pymysql://meta.analytics.db.svc.wikimedia.cloud:3306/meta_p",
        description="Connection string for the site matrix database.",
    )
    database_quota: int = Field(
        default=5,
        ge=1,
        description="Maximum number of open replica connections before jobs are refused.",
    )
    query_timeout_seconds: int = Field(
        default=300,
        ge=1,
        description="max_statement_time applied to every replica statement (seconds).",
    )
    stale_job_idle_minutes: int = Field(
        default=60,
        ge=1,
        description="Idle window after which a busy job is considered stale.",
    )
    stale_job_removal_hours: int = Field(
        default=24,
        ge=1,
        description="Age after which a stale job is removed outright.",
    )
    pageviews_endpoint: str = Field(
        default="https://wikimedia.org/api/rest_v1/metrics/pageviews",
        description="Base URL of the Wikimedia REST pageviews API.",
    )
    pageviews_timeout_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Total timeout of a single pageviews request.",
    )
    pageviews_connect_timeout_seconds: float = Field(
        default=1.5,
        gt=0,
        description="Connect timeout of a single pageviews request.",
    )
    pageviews_retries: int = Field(
        default=3,
        ge=0,
        description="Retry attempts for failed pageviews requests.",
    )
    pageviews_concurrency: int = Field(
        default=10,
        ge=1,
        description="Maximum number of pageviews requests in flight.",
    )
    pageviews_chunk_size: int = Field(
        default=100,
        ge=1,
        description="Number of page titles requested per concurrent batch.",
    )
    pageviews_user_agent: str = Field(
        default="eventmetrics/0.1 (https://eventmetrics.wmcloud.org)",
        description="User-Agent sent to the pageviews API.",
    )
    page_info_cache_ttl_seconds: int = Field(
        default=10 * 60,
        ge=0,
        description="TTL for single-page created/improved detail queries.",
    )
    actor_cache_size: int = Field(
        default=3,
        ge=1,
        description="Number of wikis whose participant actor IDs are kept per run.",
    )
    max_pages: int = Field(
        default=50_000,
        ge=1,
        description="Row cap of page ID queries.",
    )

    @classmethod
    def build_default(cls) -> "AppConfig":
        """Construct configuration from the environment."""

        return cls()


__all__ = ["AppConfig", "DEFAULT_REPLICA_SLICES"]
