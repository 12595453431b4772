"""Columnar store connection used by the replay executor."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg2

from . import Connection

logger = logging.getLogger(__name__)


class StoreUnavailable(RuntimeError):
    """Raised when the columnar store connection is lost; not recoverable in-process."""


class ColumnarStore:
    """Executes replay statements inside one outer transaction per poll cycle."""

    def __init__(self, conn: Connection):
        self.conn = conn
        self.conn.autocommit = False

    @property
    def closed(self) -> bool:
        return bool(self.conn.closed)

    def execute(self, statement: str) -> None:
        try:
            with self.conn.cursor() as cur:
                cur.execute(statement)
        except psycopg2.Error as exc:
            if self.conn.closed:
                raise StoreUnavailable(f"columnar store connection lost: {exc}") from exc
            raise

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit on success, roll back on any failure and re-raise."""
        try:
            yield
        except BaseException:
            if not self.conn.closed:
                try:
                    self.conn.rollback()
                except psycopg2.Error:
                    logger.exception("rollback of columnar store transaction failed")
            raise
        try:
            self.conn.commit()
        except psycopg2.Error as exc:
            if self.conn.closed:
                raise StoreUnavailable(f"columnar store connection lost: {exc}") from exc
            raise

    def close(self) -> None:
        if not self.conn.closed:
            self.conn.close()


__all__ = ["ColumnarStore", "StoreUnavailable"]
