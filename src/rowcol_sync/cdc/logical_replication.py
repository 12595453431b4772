"""Shared logical replication primitives for the columnar replay pipeline.

These types intentionally stay free of any database driver so the decoder,
buffer manager and replay executor can be unit tested without a live
PostgreSQL connection.  Real sources wire in psycopg2 while tests provide
simple lists of messages.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol


class CheckpointStore(Protocol):
    """Persistence backend used to store and retrieve replayed commit positions."""

    def load(self, slot_name: str) -> Optional[int]: ...

    def save(self, slot_name: str, lsn: int) -> None: ...

    def reset(
        self,
        slot_name: str,
        *,
        expected_lsn: Optional[int] = None,
        new_lsn: Optional[int] = None,
        force: bool = False,
    ) -> None: ...


@dataclass(frozen=True)
class ReplicationStreamMessage:
    """Raw message yielded by a change-stream source."""

    lsn: int
    data: bytes


class ChangeStreamSource(Protocol):
    """Pull interface over the source database's logical change stream.

    ``fetch`` returns a bounded batch of raw messages in source commit order.
    ``acknowledge`` advances the confirmed position once everything decoded
    from the batch has been replayed.  ``rewind`` discards any in-flight
    delivery state so the next ``fetch`` starts again from the last
    acknowledged position.
    """

    def fetch(self, max_messages: int) -> List[ReplicationStreamMessage]: ...

    def acknowledge(self, lsn: int) -> None: ...

    def rewind(self) -> None: ...

    def close(self) -> None: ...


class ExponentialBackoff:
    """Exponential backoff helper with optional full jitter."""

    def __init__(
        self,
        base_interval: float = 0.5,
        multiplier: float = 2.0,
        max_interval: float = 30.0,
        jitter: bool = True,
        random_fn: Optional[Callable[[], float]] = None,
    ) -> None:
        if base_interval <= 0:
            raise ValueError("base_interval must be positive")
        if multiplier < 1:
            raise ValueError("multiplier must be at least 1.0")
        if max_interval < base_interval:
            raise ValueError("max_interval must be >= base_interval")
        self.base_interval = base_interval
        self.multiplier = multiplier
        self.max_interval = max_interval
        self.jitter = jitter
        self.random_fn = random_fn or random.random
        self._attempt = 0

    @property
    def attempts(self) -> int:
        return self._attempt

    def reset(self) -> None:
        self._attempt = 0

    def next_delay(self) -> float:
        raw = min(
            self.base_interval * (self.multiplier**self._attempt), self.max_interval
        )
        self._attempt += 1
        if not self.jitter:
            return raw
        jitter_value = self.random_fn()
        return jitter_value * raw


def int_to_lsn(value: int) -> str:
    """Render an integer WAL position in PostgreSQL's ``X/X`` notation."""
    upper = value >> 32
    lower = value & 0xFFFFFFFF
    return f"{upper:X}/{lower:X}"


def lsn_to_int(value: str) -> int:
    """Parse PostgreSQL's ``X/X`` WAL position notation into an integer."""
    upper, sep, lower = value.partition("/")
    if not sep:
        raise ValueError(f"invalid LSN: {value!r}")
    return (int(upper, 16) << 32) | int(lower, 16)


__all__ = [
    "ChangeStreamSource",
    "CheckpointStore",
    "ExponentialBackoff",
    "ReplicationStreamMessage",
    "int_to_lsn",
    "lsn_to_int",
]
