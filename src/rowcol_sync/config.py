"""Runtime configuration helpers for the row-to-columnar replicator."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """Immutable container for service configuration."""

    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    cdc_slot: str
    cdc_publication: str
    cdc_source_mode: str
    cdc_max_batch_messages: int
    cdc_idle_sleep_seconds: float
    cdc_checkpoint_backend: str
    cdc_resume_path: Path
    cdc_resume_fsync: bool
    pg_replication_user: str
    pg_replication_password: str
    pg_replication_host: str
    pg_replication_port: int
    pg_replication_database: str
    pg_replication_sslmode: str
    relay_relation: str = "ddl_queue"
    relay_namespace: str = ""
    relay_payload_column: int = 2
    columnar_suffix: str = "_col"
    columnar_access_method: str = "columnar"
    metrics_port: int = 0
    log_level: str = "INFO"

    @property
    def replication_dsn(self) -> str:
        return (
            f"host={self.pg_replication_host} "
            f"port={self.pg_replication_port} "
            f"dbname={self.pg_replication_database} "
            f"user={self.pg_replication_user} "
            f"password={self.pg_replication_password} "
            f"sslmode={self.pg_replication_sslmode}"
        )


def _as_bool(value: Optional[str], default: bool) -> bool:
    """Convert environment strings to booleans."""
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no"}


def _coerce_checkpoint_backend(value: Optional[str]) -> str:
    if value is None:
        return "file"
    normalized = value.strip().lower()
    if normalized in {"memory", "file"}:
        return normalized
    return "file"


def _coerce_source_mode(value: Optional[str]) -> str:
    if value is None:
        return "sql"
    normalized = value.strip().lower()
    if normalized in {"sql", "stream"}:
        return normalized
    return "sql"


def load_settings() -> Settings:
    """Load configuration from the environment (and `.env`)."""
    load_dotenv()
    db_host = os.getenv("PGHOST", "localhost")
    db_port = int(os.getenv("PGPORT", "5432"))
    db_name = os.getenv("PGDATABASE", "postgres")
    db_user = os.getenv("PGUSER", "postgres")
    db_password = os.getenv("PGPASSWORD", "")

    cdc_slot = os.getenv("PGREPL_SLOT", "rowcol_slot")
    cdc_publication = os.getenv("PGREPL_PUBLICATION", "htap_pub")
    cdc_source_mode = _coerce_source_mode(os.getenv("CDC_SOURCE_MODE"))
    cdc_max_batch_messages = int(os.getenv("CDC_MAX_BATCH_MESSAGES", "500"))
    cdc_idle_sleep_seconds = float(os.getenv("CDC_IDLE_SLEEP_SECONDS", "1"))
    cdc_checkpoint_backend = _coerce_checkpoint_backend(
        os.getenv("CDC_CHECKPOINT_BACKEND")
    )
    cdc_resume_path = Path(os.getenv("CDC_RESUME_PATH", "cdc_resume_tokens.json"))
    cdc_resume_fsync = _as_bool(os.getenv("CDC_RESUME_FSYNC"), False)

    pg_replication_user = os.getenv("PGREPLUSER", db_user)
    pg_replication_password = os.getenv("PGREPLPASSWORD", db_password)
    pg_replication_host = os.getenv("PGREPLHOST", db_host)
    pg_replication_port = int(os.getenv("PGREPLPORT", str(db_port)))
    pg_replication_database = os.getenv("PGREPLDATABASE", db_name)
    pg_replication_sslmode = os.getenv(
        "PGREPLSSLMODE", os.getenv("PGSSLMODE", "prefer")
    )

    relay_relation = os.getenv("RELAY_RELATION", "ddl_queue").strip()
    relay_namespace = os.getenv("RELAY_NAMESPACE", "").strip()
    relay_payload_column = int(os.getenv("RELAY_PAYLOAD_COLUMN", "2"))
    columnar_suffix = os.getenv("COLUMNAR_SUFFIX", "_col").strip()
    columnar_access_method = os.getenv("COLUMNAR_ACCESS_METHOD", "columnar").strip()
    metrics_port = int(os.getenv("METRICS_PORT", "0"))
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()

    return Settings(
        db_host=db_host,
        db_port=db_port,
        db_name=db_name,
        db_user=db_user,
        db_password=db_password,
        cdc_slot=cdc_slot,
        cdc_publication=cdc_publication,
        cdc_source_mode=cdc_source_mode,
        cdc_max_batch_messages=max(1, cdc_max_batch_messages),
        cdc_idle_sleep_seconds=cdc_idle_sleep_seconds,
        cdc_checkpoint_backend=cdc_checkpoint_backend,
        cdc_resume_path=cdc_resume_path,
        cdc_resume_fsync=cdc_resume_fsync,
        pg_replication_user=pg_replication_user,
        pg_replication_password=pg_replication_password,
        pg_replication_host=pg_replication_host,
        pg_replication_port=pg_replication_port,
        pg_replication_database=pg_replication_database,
        pg_replication_sslmode=pg_replication_sslmode,
        relay_relation=relay_relation or "ddl_queue",
        relay_namespace=relay_namespace,
        relay_payload_column=relay_payload_column,
        columnar_suffix=columnar_suffix or "_col",
        columnar_access_method=columnar_access_method or "columnar",
        metrics_port=metrics_port,
        log_level=log_level or "INFO",
    )
