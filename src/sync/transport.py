from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Protocol

from common.errors import RemoteConflictError, SyncError
from state.models import utcnow


@dataclass(frozen=True)
class RemoteSnapshot:
    """What the remote currently holds for a key."""

    token: str
    version: str
    updated_at: datetime


@dataclass(frozen=True)
class PushAck:
    version: str
    updated_at: datetime


class RemoteTransport(Protocol):
    """
    Boundary to the remote store.

    - pull(key): the current remote copy, or None when the key is absent.
    - push(key, token, expected_version): store `token`. When
      `expected_version` is given the write must only succeed if the remote
      still holds that version; when it is None the write must only succeed if
      the key is absent. Otherwise raise RemoteConflictError.
    - Any other failure is raised as SyncError.
    """

    def pull(self, key: str) -> Optional[RemoteSnapshot]:
        ...

    def push(self, key: str, token: str, *, expected_version: Optional[str] = None) -> PushAck:
        ...


class MemoryTransport:
    """
    In-process remote, for tests and local development.

    Set `available = False` to simulate an outage: every call then raises
    SyncError until it is switched back on.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._data: Dict[str, RemoteSnapshot] = {}
        self._counter = 0
        self._lock = threading.Lock()
        self._clock = clock
        self.available = True
        self.push_count = 0
        self.pull_count = 0

    def _check(self) -> None:
        if not self.available:
            raise SyncError("remote unavailable")

    def pull(self, key: str) -> Optional[RemoteSnapshot]:
        with self._lock:
            self._check()
            self.pull_count += 1
            return self._data.get(key)

    def push(self, key: str, token: str, *, expected_version: Optional[str] = None) -> PushAck:
        with self._lock:
            self._check()
            current = self._data.get(key)
            current_version = current.version if current else None
            if current_version != expected_version:
                raise RemoteConflictError(
                    f"version mismatch for {key!r}: expected {expected_version}, found {current_version}"
                )
            self.push_count += 1
            return self._store(key, token)

    def put_remote(self, key: str, token: str) -> RemoteSnapshot:
        """Write as another client would, bypassing version checks."""
        with self._lock:
            self._store(key, token)
            return self._data[key]

    def _store(self, key: str, token: str) -> PushAck:
        self._counter += 1
        snap = RemoteSnapshot(token=token, version=f"v{self._counter}", updated_at=self._clock())
        self._data[key] = snap
        return PushAck(version=snap.version, updated_at=snap.updated_at)


__all__ = [
    "RemoteSnapshot",
    "PushAck",
    "RemoteTransport",
    "MemoryTransport",
]
