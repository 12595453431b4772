"""Relation schema cache giving meaning to raw pgoutput column values."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type_oid: int
    type_modifier: int = -1
    is_key: bool = False


@dataclass(frozen=True)
class RelationSchema:
    """Column layout announced by a pgoutput Relation message."""

    relation_id: int
    namespace: str
    name: str
    columns: Tuple[ColumnSpec, ...]
    is_relay: bool = False

    @property
    def qualified_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}.{self.name}"
        return self.name

    @property
    def column_count(self) -> int:
        return len(self.columns)


class RelationCatalog:
    """Maps relation ids to their most recently announced schema.

    Entries are replaced wholesale on every definition and are never
    partially mutated.  A relation whose name matches the configured relay
    relation is flagged so the decoder can dispatch on it directly.
    """

    def __init__(self, relay_relation: str = "ddl_queue", relay_namespace: str = "") -> None:
        self._relay_relation = relay_relation
        self._relay_namespace = relay_namespace
        self._entries: Dict[int, RelationSchema] = {}

    def define(
        self,
        relation_id: int,
        namespace: str,
        name: str,
        columns: Iterable[ColumnSpec],
    ) -> RelationSchema:
        schema = RelationSchema(
            relation_id=relation_id,
            namespace=namespace,
            name=name,
            columns=tuple(columns),
            is_relay=self._is_relay(namespace, name),
        )
        previous = self._entries.get(relation_id)
        self._entries[relation_id] = schema
        if previous is not None and previous != schema:
            logger.info(
                "relation %s (%d) redefined with %d columns",
                schema.qualified_name,
                relation_id,
                schema.column_count,
            )
        return schema

    def lookup(self, relation_id: int) -> Optional[RelationSchema]:
        return self._entries.get(relation_id)

    def __contains__(self, relation_id: object) -> bool:
        return relation_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RelationSchema]:
        return iter(list(self._entries.values()))

    def _is_relay(self, namespace: str, name: str) -> bool:
        if name != self._relay_relation:
            return False
        return not self._relay_namespace or namespace == self._relay_namespace


__all__ = ["ColumnSpec", "RelationCatalog", "RelationSchema"]
