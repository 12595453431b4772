"""Decoder for `pgoutput` (protocol version 1) logical replication messages.

Each raw message is decoded independently into one of the ``ChangeEvent``
variants below.  Relation messages update the injected ``RelationCatalog``;
inserts into the relay relation are surfaced as ``RelayStatement`` so
downstream code never has to compare relation names.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from .catalog import ColumnSpec, RelationCatalog, RelationSchema

logger = logging.getLogger(__name__)

# Seconds between the Unix epoch and the PostgreSQL epoch (2000-01-01).
PG_EPOCH_OFFSET = 946_684_800

TAG_BEGIN = "B"
TAG_COMMIT = "C"
TAG_RELATION = "R"
TAG_INSERT = "I"
# Recognised but not replicated: type, origin, update, delete, truncate, message.
IGNORED_TAGS = frozenset("YOUDTM")

COLUMN_NULL = "n"
COLUMN_UNCHANGED_TOAST = "u"
COLUMN_TEXT = "t"
COLUMN_BINARY = "b"

KEY_COLUMN_FLAG = 0x01


class DecodeError(ValueError):
    """Raised when a message is malformed or truncated."""

    def __init__(self, reason: str, *, tag: str = "?", offset: int = 0) -> None:
        super().__init__(f"{reason} (tag={tag!r}, offset={offset})")
        self.reason = reason
        self.tag = tag
        self.offset = offset


@dataclass(frozen=True)
class BeginTxn:
    final_lsn: int
    commit_time: float
    xid: int


@dataclass(frozen=True)
class CommitTxn:
    commit_lsn: int
    end_lsn: int
    commit_time: float
    flags: int = 0


@dataclass(frozen=True)
class SchemaDefinition:
    schema: RelationSchema


@dataclass(frozen=True)
class RowInsert:
    relation: RelationSchema
    values: Tuple[Optional[str], ...]


@dataclass(frozen=True)
class RelayStatement:
    """A statement carried through the relay relation, replayed verbatim."""

    relation: RelationSchema
    statement: str


ChangeEvent = Union[BeginTxn, CommitTxn, SchemaDefinition, RowInsert, RelayStatement]


class MessageReader:
    """Cursor over a single pgoutput message using network byte order."""

    def __init__(self, data: bytes, tag: str = "?") -> None:
        self._data = data
        self._offset = 0
        self.tag = tag

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def _take(self, size: int) -> bytes:
        if size < 0:
            raise DecodeError(
                f"negative field length {size}", tag=self.tag, offset=self._offset
            )
        end = self._offset + size
        if end > len(self._data):
            raise DecodeError(
                f"truncated message: need {size} bytes, have {self.remaining}",
                tag=self.tag,
                offset=self._offset,
            )
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk

    def read_byte(self) -> str:
        return chr(self._take(1)[0])

    def read_int8(self) -> int:
        return struct.unpack("!b", self._take(1))[0]

    def read_int16(self) -> int:
        return struct.unpack("!h", self._take(2))[0]

    def read_int32(self) -> int:
        return struct.unpack("!i", self._take(4))[0]

    def read_uint32(self) -> int:
        return struct.unpack("!I", self._take(4))[0]

    def read_int64(self) -> int:
        return struct.unpack("!q", self._take(8))[0]

    def read_uint64(self) -> int:
        return struct.unpack("!Q", self._take(8))[0]

    def read_string(self) -> str:
        end = self._data.find(b"\x00", self._offset)
        if end < 0:
            raise DecodeError(
                "unterminated string", tag=self.tag, offset=self._offset
            )
        raw = self._data[self._offset : end]
        self._offset = end + 1
        return self._decode_text(raw)

    def read_counted_text(self) -> str:
        length = self.read_int32()
        return self._decode_text(self._take(length))

    def _decode_text(self, raw: bytes) -> str:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(
                f"invalid UTF-8 payload: {exc.reason}", tag=self.tag, offset=self._offset
            ) from exc


def pg_timestamp_to_unix(value: int) -> float:
    """Convert microseconds since the PostgreSQL epoch to Unix seconds."""
    return value / 1_000_000 + PG_EPOCH_OFFSET


class PgOutputDecoder:
    """Parses raw pgoutput messages into ``ChangeEvent`` values.

    ``decode`` returns ``None`` for messages that carry nothing to replay:
    inserts for relations without a cached schema, relay rows without a
    payload, and message types this replicator does not handle.
    """

    def __init__(self, catalog: RelationCatalog, relay_payload_column: int = 2) -> None:
        if relay_payload_column < 0:
            raise ValueError("relay_payload_column must be non-negative")
        self._catalog = catalog
        self._relay_payload_column = relay_payload_column

    @property
    def catalog(self) -> RelationCatalog:
        return self._catalog

    def decode(self, data: bytes) -> Optional[ChangeEvent]:
        if not data:
            raise DecodeError("empty message")
        tag = chr(data[0])
        reader = MessageReader(data, tag=tag)
        reader.read_byte()

        if tag == TAG_BEGIN:
            return self._decode_begin(reader)
        if tag == TAG_COMMIT:
            return self._decode_commit(reader)
        if tag == TAG_RELATION:
            return self._decode_relation(reader)
        if tag == TAG_INSERT:
            return self._decode_insert(reader)
        if tag in IGNORED_TAGS:
            logger.debug("ignoring pgoutput message with tag %r", tag)
            return None
        logger.warning("unknown pgoutput tag %r (%d bytes)", tag, len(data))
        return None

    @staticmethod
    def _decode_begin(reader: MessageReader) -> BeginTxn:
        final_lsn = reader.read_uint64()
        commit_time = pg_timestamp_to_unix(reader.read_int64())
        xid = reader.read_uint32()
        return BeginTxn(final_lsn=final_lsn, commit_time=commit_time, xid=xid)

    @staticmethod
    def _decode_commit(reader: MessageReader) -> CommitTxn:
        flags = reader.read_int8()
        commit_lsn = reader.read_uint64()
        end_lsn = reader.read_uint64()
        commit_time = pg_timestamp_to_unix(reader.read_int64())
        return CommitTxn(
            commit_lsn=commit_lsn,
            end_lsn=end_lsn,
            commit_time=commit_time,
            flags=flags,
        )

    def _decode_relation(self, reader: MessageReader) -> SchemaDefinition:
        relation_id = reader.read_uint32()
        namespace = reader.read_string()
        name = reader.read_string()
        reader.read_int8()  # replica identity
        column_count = reader.read_int16()
        if column_count < 0:
            raise DecodeError(
                f"negative column count {column_count}",
                tag=reader.tag,
                offset=reader.offset,
            )
        columns: List[ColumnSpec] = []
        for _ in range(column_count):
            flags = reader.read_int8()
            column_name = reader.read_string()
            type_oid = reader.read_uint32()
            type_modifier = reader.read_int32()
            columns.append(
                ColumnSpec(
                    name=column_name,
                    type_oid=type_oid,
                    type_modifier=type_modifier,
                    is_key=bool(flags & KEY_COLUMN_FLAG),
                )
            )
        schema = self._catalog.define(relation_id, namespace, name, columns)
        logger.info("RELATION: %s (%d cols)", schema.qualified_name, column_count)
        return SchemaDefinition(schema=schema)

    def _decode_insert(
        self, reader: MessageReader
    ) -> Union[RowInsert, RelayStatement, None]:
        relation_id = reader.read_uint32()
        marker = reader.read_byte()
        if marker != "N":
            raise DecodeError(
                f"unexpected tuple marker {marker!r}",
                tag=reader.tag,
                offset=reader.offset,
            )
        values = self._read_tuple(reader)

        schema = self._catalog.lookup(relation_id)
        if schema is None:
            logger.debug(
                "skipping insert for unknown relation %d (%d columns)",
                relation_id,
                len(values),
            )
            return None

        if schema.is_relay:
            return self._relay_statement(schema, values)

        if len(values) != schema.column_count:
            logger.warning(
                "skipping insert into %s: %d values for %d cached columns",
                schema.qualified_name,
                len(values),
                schema.column_count,
            )
            return None
        return RowInsert(relation=schema, values=values)

    def _relay_statement(
        self, schema: RelationSchema, values: Tuple[Optional[str], ...]
    ) -> Optional[RelayStatement]:
        index = self._relay_payload_column
        if index >= len(values):
            logger.warning(
                "relay row in %s has %d columns; payload column %d missing",
                schema.qualified_name,
                len(values),
                index,
            )
            return None
        statement = values[index]
        if statement is None:
            logger.warning(
                "relay row in %s carries no statement in column %d",
                schema.qualified_name,
                index,
            )
            return None
        return RelayStatement(relation=schema, statement=statement)

    @staticmethod
    def _read_tuple(reader: MessageReader) -> Tuple[Optional[str], ...]:
        column_count = reader.read_int16()
        if column_count < 0:
            raise DecodeError(
                f"negative column count {column_count}",
                tag=reader.tag,
                offset=reader.offset,
            )
        values: List[Optional[str]] = []
        for _ in range(column_count):
            kind = reader.read_byte()
            if kind in (COLUMN_NULL, COLUMN_UNCHANGED_TOAST):
                values.append(None)
            elif kind in (COLUMN_TEXT, COLUMN_BINARY):
                values.append(reader.read_counted_text())
            else:
                raise DecodeError(
                    f"unknown column kind {kind!r}",
                    tag=reader.tag,
                    offset=reader.offset,
                )
        return tuple(values)


__all__ = [
    "BeginTxn",
    "ChangeEvent",
    "CommitTxn",
    "DecodeError",
    "MessageReader",
    "PgOutputDecoder",
    "RelayStatement",
    "RowInsert",
    "SchemaDefinition",
    "TAG_BEGIN",
    "TAG_COMMIT",
    "pg_timestamp_to_unix",
]
