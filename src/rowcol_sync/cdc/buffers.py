"""Transaction buffers grouping replay statements by source transaction."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class ProtocolViolation(RuntimeError):
    """Raised when the change stream breaks the begin/commit state machine."""


@dataclass
class TransactionBuffer:
    handle: int
    xid: Optional[int] = None
    commit_lsn: Optional[int] = None
    end_lsn: Optional[int] = None
    implicit: bool = False
    closed: bool = False
    statements: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.statements)


class TransactionBufferManager:
    """Owns the pending and ready transaction queues.

    At most one buffer is open at any time.  Closed buffers move to the ready
    queue in close order and ``drain_ready`` hands them out in that same order.
    """

    def __init__(self) -> None:
        self._next_handle = 1
        self._buffers: Dict[int, TransactionBuffer] = {}
        self._ready: "OrderedDict[int, TransactionBuffer]" = OrderedDict()
        self._open_handle: Optional[int] = None

    @property
    def current(self) -> Optional[int]:
        return self._open_handle

    @property
    def pending_count(self) -> int:
        return 1 if self._open_handle is not None else 0

    @property
    def ready_count(self) -> int:
        return len(self._ready)

    def get(self, handle: int) -> Optional[TransactionBuffer]:
        return self._buffers.get(handle)

    def open(
        self,
        *,
        xid: Optional[int] = None,
        commit_lsn: Optional[int] = None,
        implicit: bool = False,
    ) -> int:
        if self._open_handle is not None:
            raise ProtocolViolation(
                f"transaction {xid} began while buffer {self._open_handle} is still open"
            )
        handle = self._next_handle
        self._next_handle += 1
        self._buffers[handle] = TransactionBuffer(
            handle=handle, xid=xid, commit_lsn=commit_lsn, implicit=implicit
        )
        self._open_handle = handle
        return handle

    def append(self, handle: int, statement: str) -> None:
        buffer = self._require_open(handle, "append to")
        buffer.statements.append(statement)

    def close(
        self,
        handle: int,
        *,
        commit_lsn: Optional[int] = None,
        end_lsn: Optional[int] = None,
    ) -> TransactionBuffer:
        buffer = self._require_open(handle, "close")
        buffer.closed = True
        if commit_lsn is not None:
            buffer.commit_lsn = commit_lsn
        if end_lsn is not None:
            buffer.end_lsn = end_lsn
        self._open_handle = None
        self._ready[handle] = buffer
        return buffer

    def drain_ready(self) -> List[TransactionBuffer]:
        drained = list(self._ready.values())
        for handle in self._ready:
            self._buffers.pop(handle, None)
        self._ready.clear()
        return drained

    def reset(self) -> int:
        """Discard every pending and ready buffer; returns how many were dropped."""
        dropped = len(self._buffers)
        if dropped:
            logger.warning("discarding %d transaction buffer(s)", dropped)
        self._buffers.clear()
        self._ready.clear()
        self._open_handle = None
        return dropped

    def _require_open(self, handle: int, action: str) -> TransactionBuffer:
        buffer = self._buffers.get(handle)
        if buffer is None:
            raise ProtocolViolation(f"cannot {action} unknown buffer {handle}")
        if buffer.closed:
            raise ProtocolViolation(f"cannot {action} closed buffer {handle}")
        return buffer


__all__ = ["ProtocolViolation", "TransactionBuffer", "TransactionBufferManager"]
