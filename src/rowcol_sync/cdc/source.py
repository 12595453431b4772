"""Change-stream sources backed by a PostgreSQL logical replication slot."""

from __future__ import annotations

import logging
import select
import time
from typing import Any, Callable, List, Optional

from ..db import LogicalReplicationConnection
from .logical_replication import ReplicationStreamMessage, int_to_lsn, lsn_to_int

logger = logging.getLogger(__name__)

PEEK_CHANGES_SQL = """
    SELECT lsn::text, xid, data
      FROM pg_logical_slot_peek_binary_changes(
               %s, NULL, %s,
               'proto_version', '1',
               'publication_names', %s)
"""

ADVANCE_SLOT_SQL = "SELECT pg_replication_slot_advance(%s, %s::pg_lsn)"


class SlotChangeSource:
    """Pulls batches with ``pg_logical_slot_peek_binary_changes``.

    Peeking never consumes changes; the slot only moves when ``acknowledge``
    advances it, so an aborted cycle sees the same batch again.
    """

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        slot_name: str,
        publication: str,
    ) -> None:
        self._connection_factory = connection_factory
        self.slot_name = slot_name
        self.publication = publication
        self._conn: Optional[Any] = None

    def _ensure_conn(self):
        if self._conn is not None and not self._conn.closed:
            return self._conn
        self._conn = self._connection_factory()
        return self._conn

    def fetch(self, max_messages: int) -> List[ReplicationStreamMessage]:
        conn = self._ensure_conn()
        rows = conn.execute(
            PEEK_CHANGES_SQL, (self.slot_name, max_messages, self.publication)
        ).fetchall()
        return [
            ReplicationStreamMessage(lsn=lsn_to_int(lsn), data=bytes(data))
            for lsn, _xid, data in rows
            if data is not None
        ]

    def acknowledge(self, lsn: int) -> None:
        conn = self._ensure_conn()
        conn.execute(ADVANCE_SLOT_SQL, (self.slot_name, int_to_lsn(lsn))).fetchall()
        logger.debug("advanced slot %s to %s", self.slot_name, int_to_lsn(lsn))

    def rewind(self) -> None:
        """Nothing to do: unacknowledged changes are peeked again."""

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
        self._conn = None


class StreamingChangeSource:
    """Collects batches from a streaming replication connection.

    ``rewind`` drops the connection; the server then restarts delivery from
    the slot's confirmed flush position on the next ``fetch``.
    """

    def __init__(
        self,
        dsn: str,
        slot_name: str,
        publication: str,
        *,
        poll_timeout: float = 1.0,
        connect: Optional[Callable[[str], Any]] = None,
        wait_readable: Optional[Callable[[Any, float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if connect is None:
            connect = LogicalReplicationConnection.connect
        self._dsn = dsn
        self.slot_name = slot_name
        self.publication = publication
        self._poll_timeout = poll_timeout
        self._connect = connect
        self._wait_readable = wait_readable or _select_readable
        self._clock = clock
        self._conn: Optional[Any] = None
        self._cursor: Optional[Any] = None

    def _ensure_cursor(self):
        if self._cursor is not None:
            return self._cursor
        conn = self._connect(self._dsn)
        cur = conn.cursor()
        cur.start_replication(
            slot_name=self.slot_name,
            decode=False,
            options={"proto_version": "1", "publication_names": self.publication},
        )
        logger.info("streaming replication started on slot %s", self.slot_name)
        self._conn = conn
        self._cursor = cur
        return cur

    def fetch(self, max_messages: int) -> List[ReplicationStreamMessage]:
        cur = self._ensure_cursor()
        messages: List[ReplicationStreamMessage] = []
        deadline = self._clock() + self._poll_timeout
        while len(messages) < max_messages:
            message = cur.read_message()
            if message is not None:
                messages.append(
                    ReplicationStreamMessage(
                        lsn=int(message.data_start),
                        data=bytes(message.payload),
                    )
                )
                continue
            if messages:
                break
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._wait_readable(cur, remaining)
        return messages

    def acknowledge(self, lsn: int) -> None:
        if self._cursor is None:
            return
        self._cursor.send_feedback(flush_lsn=lsn)

    def rewind(self) -> None:
        self.close()

    def close(self) -> None:
        cur, conn = self._cursor, self._conn
        self._cursor = None
        self._conn = None
        if cur is not None:
            cur.close()
        if conn is not None and not conn.closed:
            conn.close()


def _select_readable(cursor: Any, timeout: float) -> None:
    select.select([cursor], [], [], timeout)


__all__ = ["SlotChangeSource", "StreamingChangeSource"]
