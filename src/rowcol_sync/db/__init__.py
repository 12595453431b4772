"""Database utilities and psycopg2 helpers for the source and columnar store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterator, Optional, Tuple

import psycopg2
from psycopg2 import Error, OperationalError
from psycopg2.extras import (
    LogicalReplicationConnection as _LogicalReplicationConnection,
)

if TYPE_CHECKING:  # pragma: no cover - import-time helper only
    from rowcol_sync.config import Settings


class _ExecuteResult:
    def __init__(self, cursor):
        self._rows: list = []
        self._index = 0
        try:
            if cursor.description is not None:
                self._rows = list(cursor.fetchall())
        finally:
            cursor.close()

    def fetchone(self):
        if self._index >= len(self._rows):
            return None
        row = self._rows[self._index]
        self._index += 1
        return row

    def fetchall(self):
        remaining = self._rows[self._index :]
        self._index = len(self._rows)
        return remaining

    def __iter__(self) -> Iterator:
        return iter(self.fetchall())


class _Transaction:
    def __init__(self, connection: "Connection"):
        self._connection = connection

    def __enter__(self) -> None:
        return None

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._connection.closed:
            return False
        if exc_type is None:
            self._connection.commit()
        else:
            try:
                self._connection.rollback()
            except psycopg2.InterfaceError:
                pass
        return False


class Connection(psycopg2.extensions.connection):
    """psycopg2 connection subclass with a psycopg3-style execute/transaction surface."""

    def transaction(self) -> _Transaction:
        return _Transaction(self)

    def execute(
        self, query: Any, params: Optional[Tuple[Any, ...]] = None
    ) -> _ExecuteResult:
        cursor = self.cursor()
        cursor.execute(query, params)
        return _ExecuteResult(cursor)


class LogicalReplicationConnection(_LogicalReplicationConnection):
    """Logical replication connection with helper constructor."""

    @classmethod
    def connect(cls, dsn: str):
        return psycopg2.connect(dsn, connection_factory=cls)


def connect(*args, **kwargs) -> Connection:
    """Create a Connection instance using psycopg2."""

    kwargs.setdefault("connection_factory", Connection)
    return psycopg2.connect(*args, **kwargs)


def connect_from_settings(settings: "Settings") -> Connection:
    """Connect to the columnar store described by the PG* settings."""

    return connect(
        host=settings.db_host,
        port=settings.db_port,
        dbname=settings.db_name,
        user=settings.db_user,
        password=settings.db_password,
    )


def connect_source(settings: "Settings") -> Connection:
    """Connect to the source database holding the logical replication slot."""

    conn = connect(settings.replication_dsn)
    conn.autocommit = True
    return conn


__all__ = [
    "Connection",
    "Error",
    "LogicalReplicationConnection",
    "OperationalError",
    "connect",
    "connect_from_settings",
    "connect_source",
]
