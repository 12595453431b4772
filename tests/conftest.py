"""Test session configuration.

This module auto-loads environment variables from the project `.env` file so
integration tests can read `PG*` and `PGREPL*` settings without requiring the
developer to export them manually in the shell.
"""

from __future__ import annotations

from dataclasses import replace

import pytest
from dotenv import load_dotenv
from prometheus_client import CollectorRegistry

from rowcol_sync.cdc.metrics import ReplicationMetrics
from rowcol_sync.config import Settings


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    # Load once per test session; no error if .env is absent.
    load_dotenv()


@pytest.fixture()
def metrics() -> ReplicationMetrics:
    # A private registry per test avoids duplicate collector registration.
    return ReplicationMetrics(namespace="test", registry=CollectorRegistry())


@pytest.fixture()
def make_settings(tmp_path):
    """Build a Settings instance without touching the environment."""

    base = Settings(
        db_host="store",
        db_port=5432,
        db_name="analytics",
        db_user="app",
        db_password="secret",
        cdc_slot="rowcol_slot",
        cdc_publication="htap_pub",
        cdc_source_mode="sql",
        cdc_max_batch_messages=100,
        cdc_idle_sleep_seconds=0.5,
        cdc_checkpoint_backend="memory",
        cdc_resume_path=tmp_path / "resume.json",
        cdc_resume_fsync=False,
        pg_replication_user="replicator",
        pg_replication_password="repl",
        pg_replication_host="source",
        pg_replication_port=5433,
        pg_replication_database="oltp",
        pg_replication_sslmode="disable",
    )

    def _make(**overrides) -> Settings:
        return replace(base, **overrides)

    return _make
