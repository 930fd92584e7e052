"""Runtime configuration builder."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .core.config import AppConfig
from .db.db_init import init_db
from .infrastructure.cache import TTLCache
from .infrastructure.replicas import CENTRALAUTH, META, ReplicasClient


@dataclass(slots=True)
class RuntimeConfig:
    settings: AppConfig
    engine: Engine
    session_factory: sessionmaker[Session]
    replicas: ReplicasClient
    # Single-page detail queries, shared across runs of this process.
    page_info_cache: TTLCache


def build_replicas(settings: AppConfig) -> ReplicasClient:
    return ReplicasClient(
        url_template=settings.replica_url_template,
        slices=settings.replica_slices,
        named_urls={CENTRALAUTH: settings.centralauth_url, META: settings.meta_url},
        user=settings.replica_user,
        password=settings.replica_password,
        query_timeout_seconds=settings.query_timeout_seconds,
    )


def load_config(settings: AppConfig | None = None) -> RuntimeConfig:
    """Load configuration from the environment (SQLite by default)."""
    settings = settings or AppConfig.build_default()

    engine = create_engine(settings.database_url, future=True)
    session_factory: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)

    init_db(engine)

    return RuntimeConfig(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        replicas=build_replicas(settings),
        page_info_cache=TTLCache(timedelta(seconds=settings.page_info_cache_ttl_seconds)),
    )


__all__ = ["RuntimeConfig", "build_replicas", "load_config"]
