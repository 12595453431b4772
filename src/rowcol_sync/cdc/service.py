"""Replication worker coordinating fetch, decode, replay and acknowledgment."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Event
from typing import Callable, List, Optional

from ..config import Settings
from ..db import Error, connect_from_settings, connect_source
from ..db.store import ColumnarStore
from .buffers import ProtocolViolation, TransactionBufferManager
from .catalog import RelationCatalog
from .checkpoint import InMemoryCheckpointStore, PersistentCheckpointStore
from .encoding import ValueEncoder
from .logical_replication import (
    ChangeStreamSource,
    CheckpointStore,
    ExponentialBackoff,
    ReplicationStreamMessage,
    int_to_lsn,
)
from .metrics import ReplicationMetrics
from .pgoutput import (
    BeginTxn,
    ChangeEvent,
    CommitTxn,
    DecodeError,
    PgOutputDecoder,
    RelayStatement,
    RowInsert,
    SchemaDefinition,
    TAG_BEGIN,
    TAG_COMMIT,
)
from .replay import ReplayError, ReplayExecutor
from .source import SlotChangeSource, StreamingChangeSource

logger = logging.getLogger(__name__)

BOUNDARY_TAGS = frozenset({TAG_BEGIN, TAG_COMMIT})


@dataclass(frozen=True)
class CycleReport:
    """Outcome of a single fetch → decode → replay → acknowledge cycle."""

    messages: int = 0
    decode_errors: int = 0
    skipped: int = 0
    transactions: int = 0
    statements: int = 0
    acknowledged_lsn: Optional[int] = None
    aborted: bool = False


class ReplicationWorker:
    """Single-threaded poll driver replaying row-store changes into columnar twins.

    Each cycle fetches one bounded batch, decodes every message into the
    transaction buffers, replays all closed buffers inside one store
    transaction, records the replay watermark and only then acknowledges the
    batch to the source.  A protocol violation, replay failure or rejected
    store commit aborts the cycle without acknowledgment so the source
    redelivers the batch.
    """

    def __init__(
        self,
        *,
        slot_name: str,
        source: ChangeStreamSource,
        store: ColumnarStore,
        catalog: Optional[RelationCatalog] = None,
        decoder: Optional[PgOutputDecoder] = None,
        encoder: Optional[ValueEncoder] = None,
        buffers: Optional[TransactionBufferManager] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        metrics: Optional[ReplicationMetrics] = None,
        backoff: Optional[ExponentialBackoff] = None,
        max_batch_messages: int = 500,
        idle_sleep_seconds: float = 1.0,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._slot_name = slot_name
        self._source = source
        self._store = store
        self._catalog = catalog or RelationCatalog()
        self._decoder = decoder or PgOutputDecoder(self._catalog)
        self._encoder = encoder or ValueEncoder()
        self._buffers = buffers or TransactionBufferManager()
        self._checkpoint_store = checkpoint_store or InMemoryCheckpointStore()
        self._metrics = metrics or ReplicationMetrics()
        self._backoff = backoff or ExponentialBackoff(
            base_interval=0.5,
            multiplier=2.0,
            max_interval=30.0,
        )
        self._replay = ReplayExecutor(self._buffers, self._store)
        self._max_batch_messages = max(1, max_batch_messages)
        self._idle_sleep = idle_sleep_seconds
        self._stop_event = Event()
        self._sleep = sleep or self._wait_for_stop

    @property
    def metrics(self) -> ReplicationMetrics:
        return self._metrics

    @property
    def catalog(self) -> RelationCatalog:
        return self._catalog

    @property
    def source(self) -> ChangeStreamSource:
        return self._source

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown; the current cycle is allowed to finish."""
        self._stop_event.set()

    def close(self) -> None:
        self._source.close()
        self._store.close()

    def reset_resume_position(
        self,
        *,
        expected_lsn: Optional[int],
        new_lsn: Optional[int] = None,
        force: bool = False,
    ) -> None:
        """Manually reset the replay watermark with guardrails."""
        self._checkpoint_store.reset(
            self._slot_name,
            expected_lsn=expected_lsn,
            new_lsn=new_lsn,
            force=force,
        )

    def run_forever(self) -> None:
        logger.info("replication worker started on slot %s", self._slot_name)
        try:
            while not self._stop_event.is_set():
                self.run_cycle()
        finally:
            logger.info("replication worker exiting")

    def run_cycle(self) -> CycleReport:
        messages = self._source.fetch(self._max_batch_messages)
        self._metrics.set_batch_size(len(messages))
        if not messages:
            self._sleep(self._idle_sleep)
            return CycleReport()
        self._metrics.inc_messages(len(messages))

        try:
            decode_errors, skipped, ack_lsn = self._decode_batch(messages)
            with self._store.transaction():
                summary = self._replay.replay_all(
                    watermark=self._checkpoint_store.load(self._slot_name)
                )
        except (ProtocolViolation, ReplayError, Error) as exc:
            return self._abort_cycle(exc, len(messages))

        if summary.last_commit_lsn is not None:
            self._checkpoint_store.save(self._slot_name, summary.last_commit_lsn)
        if ack_lsn is not None:
            self._source.acknowledge(ack_lsn)

        self._metrics.inc_transactions(summary.transactions)
        self._metrics.inc_statements(summary.statements)
        self._backoff.reset()
        logger.debug(
            "cycle replayed %d transaction(s), %d statement(s); acknowledged %s",
            summary.transactions,
            summary.statements,
            int_to_lsn(ack_lsn) if ack_lsn is not None else "nothing",
        )
        return CycleReport(
            messages=len(messages),
            decode_errors=decode_errors,
            skipped=skipped + summary.skipped,
            transactions=summary.transactions,
            statements=summary.statements,
            acknowledged_lsn=ack_lsn,
        )

    def _abort_cycle(self, exc: Exception, message_count: int) -> CycleReport:
        self._buffers.reset()
        self._source.rewind()
        self._metrics.inc_aborted()
        self._metrics.inc_errors()
        delay = self._backoff.next_delay()
        logger.error(
            "replication cycle aborted (%s); batch will be redelivered in %.2fs",
            exc,
            delay,
        )
        self._sleep(delay)
        return CycleReport(messages=message_count, aborted=True)

    def _decode_batch(
        self, messages: List[ReplicationStreamMessage]
    ) -> tuple[int, int, Optional[int]]:
        decode_errors = 0
        skipped = 0
        ack_lsn: Optional[int] = None
        for index, message in enumerate(messages):
            try:
                event = self._decoder.decode(message.data)
            except DecodeError as exc:
                decode_errors += 1
                self._metrics.inc_decode_errors()
                if exc.tag in BOUNDARY_TAGS:
                    # Without the boundary the open transaction cannot be placed.
                    raise ProtocolViolation(
                        f"malformed transaction boundary at {int_to_lsn(message.lsn)}: {exc}"
                    ) from exc
                logger.warning(
                    "dropping malformed message at %s: %s", int_to_lsn(message.lsn), exc
                )
                continue
            if event is None:
                skipped += 1
                self._metrics.inc_skipped()
                continue
            if isinstance(event, BeginTxn) and index > 0:
                closed = self._close_implicit(messages[index - 1].lsn)
                if closed is not None:
                    ack_lsn = closed
            committed = self._apply(event, message)
            if committed is not None:
                ack_lsn = committed

        closed = self._close_implicit(messages[-1].lsn)
        if closed is not None:
            ack_lsn = closed
        return decode_errors, skipped, ack_lsn

    def _close_implicit(self, end_lsn: int) -> Optional[int]:
        """Close an open implicit buffer at ``end_lsn``; explicit ones stay open."""
        handle = self._buffers.current
        if handle is None:
            return None
        buffer = self._buffers.get(handle)
        if buffer is None or not buffer.implicit:
            return None
        self._buffers.close(handle, end_lsn=end_lsn)
        return end_lsn

    def _apply(
        self, event: ChangeEvent, message: ReplicationStreamMessage
    ) -> Optional[int]:
        """Feed one decoded event to the buffers; returns an acknowledgment LSN on commit."""
        if isinstance(event, BeginTxn):
            self._buffers.open(xid=event.xid, commit_lsn=event.final_lsn)
            return None
        if isinstance(event, CommitTxn):
            handle = self._buffers.current
            if handle is None:
                raise ProtocolViolation(
                    f"commit at {int_to_lsn(event.commit_lsn)} without an open transaction"
                )
            self._buffers.close(
                handle, commit_lsn=event.commit_lsn, end_lsn=event.end_lsn
            )
            return event.end_lsn
        if isinstance(event, SchemaDefinition):
            return None
        if isinstance(event, RowInsert):
            statement = self._encoder.insert_statement(event.relation, event.values)
        elif isinstance(event, RelayStatement):
            logger.info(
                "relaying statement from %s: %s",
                event.relation.qualified_name,
                event.statement,
            )
            statement = event.statement
        else:  # pragma: no cover - exhaustive over ChangeEvent
            raise TypeError(f"unsupported change event {event!r}")
        self._buffers.append(self._current_or_implicit(message), statement)
        return None

    def _current_or_implicit(self, message: ReplicationStreamMessage) -> int:
        handle = self._buffers.current
        if handle is None:
            logger.debug(
                "change at %s arrived outside a transaction; opening one",
                int_to_lsn(message.lsn),
            )
            handle = self._buffers.open(implicit=True)
        return handle

    def _wait_for_stop(self, seconds: float) -> None:
        if seconds > 0:
            self._stop_event.wait(seconds)


# ---------------------------------------------------------------------------
# Factory helpers


def build_replication_worker(
    settings: Settings,
    *,
    source: Optional[ChangeStreamSource] = None,
    store: Optional[ColumnarStore] = None,
    checkpoint_store: Optional[CheckpointStore] = None,
    metrics: Optional[ReplicationMetrics] = None,
) -> ReplicationWorker:
    """Construct a replication worker using application settings."""

    idle_sleep = settings.cdc_idle_sleep_seconds
    if source is None:
        if settings.cdc_source_mode == "stream":
            source = StreamingChangeSource(
                settings.replication_dsn,
                settings.cdc_slot,
                settings.cdc_publication,
                poll_timeout=idle_sleep,
            )
            # The streaming source already blocks for the idle interval.
            idle_sleep = 0.0
        else:
            source = SlotChangeSource(
                lambda: connect_source(settings),
                settings.cdc_slot,
                settings.cdc_publication,
            )

    if store is None:
        store = ColumnarStore(connect_from_settings(settings))

    if checkpoint_store is None:
        if settings.cdc_checkpoint_backend == "file":
            checkpoint_store = PersistentCheckpointStore(
                settings.cdc_resume_path, fsync=settings.cdc_resume_fsync
            )
        else:
            checkpoint_store = InMemoryCheckpointStore()

    catalog = RelationCatalog(
        relay_relation=settings.relay_relation,
        relay_namespace=settings.relay_namespace,
    )
    return ReplicationWorker(
        slot_name=settings.cdc_slot,
        source=source,
        store=store,
        catalog=catalog,
        decoder=PgOutputDecoder(
            catalog, relay_payload_column=settings.relay_payload_column
        ),
        encoder=ValueEncoder(table_suffix=settings.columnar_suffix),
        checkpoint_store=checkpoint_store,
        metrics=metrics,
        max_batch_messages=settings.cdc_max_batch_messages,
        idle_sleep_seconds=idle_sleep,
    )


__all__ = [
    "CycleReport",
    "ReplicationWorker",
    "build_replication_worker",
]
