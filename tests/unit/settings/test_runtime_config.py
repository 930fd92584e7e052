from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import inspect

from eventmetrics.config import build_replicas, load_config
from eventmetrics.core.config import AppConfig
from eventmetrics.services.container import build_job_handler, build_wiki_repository


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EVENTMETRICS_DATABASE_QUOTA", "2")
    monkeypatch.setenv("EVENTMETRICS_QUERY_TIMEOUT_SECONDS", "60")

    settings = AppConfig.build_default()

    assert settings.database_quota == 2
    assert settings.query_timeout_seconds == 60
    assert settings.replica_slices[0] == "s1"


def test_load_config_creates_schema() -> None:
    runtime = load_config(AppConfig(database_url="sqlite://"))

    tables = set(inspect(runtime.engine).get_table_names())
    assert {"event", "event_wiki", "event_stat", "event_wiki_stat", "job"} <= tables
    assert len(runtime.page_info_cache) == 0


def test_build_replicas_uses_settings() -> None:
    replicas = build_replicas(AppConfig(replica_slices=("s1", "s2"), query_timeout_seconds=42))

    assert replicas.slices == ("s1", "s2")
    assert replicas.query_timeout_seconds == 42


def test_container_shares_page_cache_and_settings() -> None:
    runtime = load_config(AppConfig(database_url="sqlite://", stale_job_idle_minutes=30, database_quota=3))

    with runtime.session_factory() as session:
        handler = build_job_handler(runtime, session)

    assert handler._database_quota == 3
    assert handler._idle_window == timedelta(minutes=30)
    assert build_wiki_repository(runtime)._page_info_cache is runtime.page_info_cache
