"""Watermark stores remembering the last replayed commit LSN per slot."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock, RLock
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def _check_reset(
    current: Optional[int],
    *,
    expected_lsn: Optional[int],
    new_lsn: Optional[int],
    force: bool,
) -> None:
    """Validate a manual watermark reset; raises ValueError when refused."""
    if force:
        return
    if current is None:
        if expected_lsn is not None:
            raise ValueError("no watermark recorded for slot; supply force=True")
        return
    if expected_lsn is None or expected_lsn != current:
        raise ValueError("unexpected watermark value")
    if new_lsn is not None and new_lsn > current:
        raise ValueError("new watermark must not exceed current value")


class InMemoryCheckpointStore:
    """Volatile store; watermarks are lost when the process exits."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._watermarks: Dict[str, int] = {}

    def load(self, slot_name: str) -> Optional[int]:
        with self._lock:
            return self._watermarks.get(slot_name)

    def save(self, slot_name: str, lsn: int) -> None:
        with self._lock:
            current = self._watermarks.get(slot_name)
            if current is None or lsn > current:
                self._watermarks[slot_name] = lsn

    def reset(
        self,
        slot_name: str,
        *,
        expected_lsn: Optional[int] = None,
        new_lsn: Optional[int] = None,
        force: bool = False,
    ) -> None:
        with self._lock:
            current = self._watermarks.get(slot_name)
            _check_reset(
                current, expected_lsn=expected_lsn, new_lsn=new_lsn, force=force
            )
            if new_lsn is None:
                self._watermarks.pop(slot_name, None)
            else:
                self._watermarks[slot_name] = new_lsn


class PersistentCheckpointStore:
    """JSON file backed store, rewritten atomically on every change."""

    def __init__(self, path: Path | str, *, fsync: bool = False) -> None:
        self._path = Path(path)
        self._fsync = fsync
        self._lock = RLock()
        self._watermarks: Dict[str, int] = {}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:  # pragma: no cover - only raised on permission issues
            logger.warning(
                "unable to create watermark directory %s: %s",
                self._path.parent,
                exc,
            )
        self._watermarks = self._read_file()

    @property
    def path(self) -> Path:
        return self._path

    def load(self, slot_name: str) -> Optional[int]:
        with self._lock:
            return self._watermarks.get(slot_name)

    def save(self, slot_name: str, lsn: int) -> None:
        with self._lock:
            current = self._watermarks.get(slot_name)
            if current is not None and lsn <= current:
                return
            self._watermarks[slot_name] = lsn
            self._write_locked()

    def reset(
        self,
        slot_name: str,
        *,
        expected_lsn: Optional[int] = None,
        new_lsn: Optional[int] = None,
        force: bool = False,
    ) -> None:
        with self._lock:
            current = self._watermarks.get(slot_name)
            _check_reset(
                current, expected_lsn=expected_lsn, new_lsn=new_lsn, force=force
            )
            if new_lsn is None:
                if current is None:
                    return
                del self._watermarks[slot_name]
            else:
                self._watermarks[slot_name] = new_lsn
            self._write_locked()

    def _read_file(self) -> Dict[str, int]:
        if not self._path.exists():
            return {}
        try:
            raw = self._path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw else {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("failed to load watermark file %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("watermark file %s has invalid format; ignoring", self._path)
            return {}
        return {
            key: value
            for key, value in data.items()
            if isinstance(key, str) and isinstance(value, int)
        }

    def _write_locked(self) -> None:
        fd, temp_path = tempfile.mkstemp(
            prefix=f".{self._path.name}.", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                json.dump(self._watermarks, tmp, sort_keys=True)
                tmp.flush()
                if self._fsync:
                    os.fsync(tmp.fileno())
            os.replace(temp_path, self._path)
        except OSError as exc:
            logger.error("failed to persist watermark file %s: %s", self._path, exc)
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
        if self._fsync:
            self._fsync_directory()

    def _fsync_directory(self) -> None:
        try:
            dir_fd = os.open(self._path.parent, os.O_RDONLY)
        except OSError:  # pragma: no cover - platform dependent
            return
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)


__all__ = ["InMemoryCheckpointStore", "PersistentCheckpointStore"]
