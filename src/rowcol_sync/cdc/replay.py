"""Replay closed transaction buffers against the columnar store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ..db.store import StoreUnavailable
from .buffers import TransactionBuffer, TransactionBufferManager

logger = logging.getLogger(__name__)


class StatementExecutor(Protocol):
    """Anything able to run a single SQL statement against the columnar store."""

    def execute(self, statement: str) -> None: ...


class ReplayError(RuntimeError):
    """Raised when a statement fails; the whole batch must be retried."""

    def __init__(self, statement: str, handle: int, cause: BaseException) -> None:
        super().__init__(f"replay of buffer {handle} failed: {cause}")
        self.statement = statement
        self.handle = handle


@dataclass(frozen=True)
class ReplaySummary:
    transactions: int = 0
    statements: int = 0
    skipped: int = 0
    last_commit_lsn: Optional[int] = None


class ReplayExecutor:
    """Drains ready buffers in FIFO order and executes their statements.

    Buffers whose commit LSN is at or below ``watermark`` were already
    replayed by an earlier cycle whose acknowledgment never reached the
    source, and are dropped instead of executed again.
    """

    def __init__(
        self, buffers: TransactionBufferManager, executor: StatementExecutor
    ) -> None:
        self._buffers = buffers
        self._executor = executor

    def replay_all(self, *, watermark: Optional[int] = None) -> ReplaySummary:
        transactions = 0
        statements = 0
        skipped = 0
        last_commit_lsn: Optional[int] = None
        while True:
            ready = self._buffers.drain_ready()
            if not ready:
                break
            for buffer in ready:
                if self._already_replayed(buffer, watermark):
                    skipped += 1
                    logger.info(
                        "skipping transaction %s at %s: already replayed",
                        buffer.xid,
                        buffer.commit_lsn,
                    )
                    continue
                statements += self._replay_buffer(buffer)
                transactions += 1
                if buffer.commit_lsn is not None and (
                    last_commit_lsn is None or buffer.commit_lsn > last_commit_lsn
                ):
                    last_commit_lsn = buffer.commit_lsn
        return ReplaySummary(
            transactions=transactions,
            statements=statements,
            skipped=skipped,
            last_commit_lsn=last_commit_lsn,
        )

    def _replay_buffer(self, buffer: TransactionBuffer) -> int:
        for statement in buffer.statements:
            try:
                self._executor.execute(statement)
            except StoreUnavailable:
                raise
            except Exception as exc:  # noqa: BLE001 - any failure aborts the batch
                logger.error(
                    "statement failed in transaction %s: %s -- %s",
                    buffer.xid,
                    exc,
                    statement,
                )
                raise ReplayError(statement, buffer.handle, exc) from exc
        return len(buffer.statements)

    @staticmethod
    def _already_replayed(
        buffer: TransactionBuffer, watermark: Optional[int]
    ) -> bool:
        if watermark is None or buffer.commit_lsn is None:
            return False
        return buffer.commit_lsn <= watermark


__all__ = [
    "ReplayError",
    "ReplayExecutor",
    "ReplaySummary",
    "StatementExecutor",
    "StoreUnavailable",
]
