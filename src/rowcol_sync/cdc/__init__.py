"""Change-stream decoding, transaction buffering and columnar replay."""

from .buffers import ProtocolViolation, TransactionBuffer, TransactionBufferManager
from .catalog import ColumnSpec, RelationCatalog, RelationSchema
from .checkpoint import InMemoryCheckpointStore, PersistentCheckpointStore
from .ddl import ColumnarNaming, DdlKind, DdlRecord
from .encoding import ValueEncoder
from .logical_replication import (
    ChangeStreamSource,
    ExponentialBackoff,
    ReplicationStreamMessage,
    int_to_lsn,
    lsn_to_int,
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
)
from .replay import ReplayError, ReplayExecutor, ReplaySummary
from .service import CycleReport, ReplicationWorker, build_replication_worker
from .source import SlotChangeSource, StreamingChangeSource

__all__ = [
    "BeginTxn",
    "ChangeEvent",
    "ChangeStreamSource",
    "ColumnSpec",
    "ColumnarNaming",
    "CommitTxn",
    "CycleReport",
    "DdlKind",
    "DdlRecord",
    "DecodeError",
    "ExponentialBackoff",
    "InMemoryCheckpointStore",
    "PersistentCheckpointStore",
    "PgOutputDecoder",
    "ProtocolViolation",
    "RelationCatalog",
    "RelationSchema",
    "RelayStatement",
    "ReplayError",
    "ReplayExecutor",
    "ReplaySummary",
    "ReplicationMetrics",
    "ReplicationStreamMessage",
    "ReplicationWorker",
    "RowInsert",
    "SchemaDefinition",
    "SlotChangeSource",
    "StreamingChangeSource",
    "TransactionBuffer",
    "TransactionBufferManager",
    "ValueEncoder",
    "build_replication_worker",
    "int_to_lsn",
    "lsn_to_int",
]
