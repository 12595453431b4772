"""Prometheus counters for the replication worker."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge


class ReplicationMetrics:
    """Wraps Prometheus counters and keeps an in-process snapshot for tests."""

    def __init__(
        self,
        namespace: str = "rowcol_sync",
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._registry = registry if registry is not None else REGISTRY
        prefix = f"{namespace}_cdc"
        self._messages = self._counter(
            f"{prefix}_messages_total", "Raw change-stream messages fetched"
        )
        self._decode_errors = self._counter(
            f"{prefix}_decode_errors_total", "Malformed messages dropped"
        )
        self._skipped = self._counter(
            f"{prefix}_skipped_total", "Messages with nothing to replay"
        )
        self._transactions = self._counter(
            f"{prefix}_transactions_total", "Transactions replayed"
        )
        self._statements = self._counter(
            f"{prefix}_statements_total", "Statements executed on the columnar store"
        )
        self._aborted = self._counter(
            f"{prefix}_aborted_cycles_total", "Poll cycles aborted and left for redelivery"
        )
        self._errors = self._counter(f"{prefix}_errors_total", "Replication errors")
        self._batch_size = Gauge(
            f"{prefix}_batch_size",
            "Messages in the most recent batch",
            registry=self._registry,
        )
        self._snapshot: Dict[str, float] = defaultdict(float)

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def _counter(self, name: str, documentation: str) -> Counter:
        return Counter(name, documentation, registry=self._registry)

    def _inc(self, counter: Counter, key: str, amount: int) -> None:
        if amount <= 0:
            return
        counter.inc(amount)
        self._snapshot[key] += amount

    def inc_messages(self, amount: int = 1) -> None:
        self._inc(self._messages, "messages_total", amount)

    def inc_decode_errors(self, amount: int = 1) -> None:
        self._inc(self._decode_errors, "decode_errors_total", amount)

    def inc_skipped(self, amount: int = 1) -> None:
        self._inc(self._skipped, "skipped_total", amount)

    def inc_transactions(self, amount: int = 1) -> None:
        self._inc(self._transactions, "transactions_total", amount)

    def inc_statements(self, amount: int = 1) -> None:
        self._inc(self._statements, "statements_total", amount)

    def inc_aborted(self, amount: int = 1) -> None:
        self._inc(self._aborted, "aborted_cycles_total", amount)

    def inc_errors(self, amount: int = 1) -> None:
        self._inc(self._errors, "errors_total", amount)

    def set_batch_size(self, value: int) -> None:
        self._batch_size.set(value)
        self._snapshot["batch_size"] = value

    def snapshot(self) -> Dict[str, float]:
        return dict(self._snapshot)


__all__ = ["ReplicationMetrics"]
