"""Columnar twin naming and the CREATE/ALTER TABLE rewrite rule.

The rewrite itself runs inside PostgreSQL as an event trigger (see
``rowcol_sync/sql/install.sql``) and publishes its output through the relay
relation.  This module mirrors the same rule in Python so operators can
preview rewrites and so the suffix convention lives in one place.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional


class DdlKind(str, enum.Enum):
    CREATE = "CREATE"
    ALTER = "ALTER"


@dataclass(frozen=True)
class DdlRecord:
    target_relation: str
    statement: str
    kind: DdlKind


def bare_table_name(object_identity: str) -> str:
    """Strip the schema from ``schema.table`` identities."""
    _, sep, table = object_identity.partition(".")
    return table if sep and table else object_identity


def ddl_kind(command_tag: str) -> Optional[DdlKind]:
    normalized = " ".join(command_tag.upper().split())
    if normalized.startswith("CREATE TABLE"):
        return DdlKind.CREATE
    if normalized.startswith("ALTER TABLE"):
        return DdlKind.ALTER
    return None


class ColumnarNaming:
    """Naming rules shared by DDL capture, publication admission and replay."""

    def __init__(self, suffix: str = "_col", access_method: str = "columnar") -> None:
        if not suffix:
            raise ValueError("suffix must not be empty")
        self.suffix = suffix
        self.access_method = access_method

    def twin_name(self, table: str) -> str:
        return f"{table}{self.suffix}"

    def is_twin(self, table: str) -> bool:
        return bare_table_name(table).endswith(self.suffix)

    def should_enroll(self, object_identity: str) -> bool:
        """Whether a newly created table belongs in the publication."""
        return not self.is_twin(object_identity)

    def rewrite(
        self, statement: str, object_identity: str, command_tag: str
    ) -> Optional[DdlRecord]:
        """Rewrite row-store DDL to target the columnar twin.

        Returns ``None`` for statements that must not be mirrored: anything
        other than CREATE/ALTER TABLE, tables already carrying the suffix,
        and statements whose target does not match ``object_identity``.
        """
        kind = ddl_kind(command_tag)
        if kind is None:
            return None
        table = bare_table_name(object_identity)
        if self.is_twin(table):
            return None

        pattern = re.compile(
            r"^\s*(CREATE|ALTER)\s+TABLE\s+((?:IF\s+NOT\s+EXISTS\s+)?)((?:\w+\.)?)"
            + re.escape(table)
            + r"\b",
            re.IGNORECASE,
        )
        twin = self.twin_name(table)
        rewritten, count = pattern.subn(
            lambda m: f"{m.group(1)} TABLE {m.group(2)}{m.group(3)}{twin}",
            statement,
            count=1,
        )
        if count == 0:
            return None

        if kind is DdlKind.CREATE:
            rewritten = self._with_access_method(rewritten)
        return DdlRecord(target_relation=twin, statement=rewritten, kind=kind)

    def _with_access_method(self, statement: str) -> str:
        clause = f" USING {self.access_method}"
        stripped = statement.rstrip()
        if stripped.endswith(";"):
            return stripped[:-1].rstrip() + clause + ";"
        return stripped + clause


__all__ = ["ColumnarNaming", "DdlKind", "DdlRecord", "bare_table_name", "ddl_kind"]
