"""Render pgoutput text values as SQL literals for columnar replay."""

from __future__ import annotations

import re
from typing import FrozenSet, Optional, Sequence

from .catalog import RelationSchema

INT2OID = 21
INT4OID = 23
INT8OID = 20
FLOAT4OID = 700
FLOAT8OID = 701
NUMERICOID = 1700

NUMERIC_TYPE_OIDS: FrozenSet[int] = frozenset(
    {INT2OID, INT4OID, INT8OID, FLOAT4OID, FLOAT8OID, NUMERICOID}
)

# Text forms accepted by float/numeric input that are not bare SQL tokens.
_NUMERIC_SPECIALS = frozenset({"nan", "infinity", "-infinity", "+infinity", "inf", "-inf", "+inf"})

_BARE_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_$]*$")

NULL_LITERAL = "NULL"


def needs_quotes(type_oid: int) -> bool:
    return type_oid not in NUMERIC_TYPE_OIDS


def quote_literal(value: str) -> str:
    """Single-quote ``value`` using standard-conforming string escaping."""
    return "'" + value.replace("'", "''") + "'"


def quote_identifier(name: str) -> str:
    """Return ``name`` bare when it is a plain lower-case identifier, else double-quoted."""
    if _BARE_IDENTIFIER.match(name):
        return name
    return '"' + name.replace('"', '""') + '"'


class ValueEncoder:
    """Turns decoded row values into replay-ready INSERT statements."""

    def __init__(self, table_suffix: str = "_col") -> None:
        self.table_suffix = table_suffix

    def encode(self, raw: Optional[str], type_oid: int) -> str:
        if raw is None:
            return NULL_LITERAL
        if needs_quotes(type_oid):
            return quote_literal(raw)
        if raw.strip().lower() in _NUMERIC_SPECIALS:
            return quote_literal(raw)
        return raw

    def target_table(self, schema: RelationSchema) -> str:
        return quote_identifier(f"{schema.name}{self.table_suffix}")

    def insert_statement(
        self, schema: RelationSchema, values: Sequence[Optional[str]]
    ) -> str:
        if len(values) != schema.column_count:
            raise ValueError(
                f"relation {schema.qualified_name} expects {schema.column_count} "
                f"values, got {len(values)}"
            )
        literals = ", ".join(
            self.encode(value, column.type_oid)
            for value, column in zip(values, schema.columns)
        )
        return f"INSERT INTO {self.target_table(schema)} VALUES ({literals});"


__all__ = [
    "NULL_LITERAL",
    "NUMERIC_TYPE_OIDS",
    "ValueEncoder",
    "needs_quotes",
    "quote_identifier",
    "quote_literal",
]
