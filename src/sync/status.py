from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStatus:
    online: bool
    syncing: bool
    pending_changes: int
    last_sync: Optional[datetime]
    conflicts: bool
    last_error: Optional[str] = None


StatusListener = Callable[[SyncStatus], None]


class StatusChannel:
    """
    Subscribe/unsubscribe fan-out of status changes.

    Listeners run synchronously on whichever thread published the change
    (the caller's for `set_state`, the worker's for background sync). A
    listener that raises is logged and does not affect the others.
    """

    def __init__(self) -> None:
        self._listeners: List[StatusListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, status: SyncStatus) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(status)
            except Exception:
                logger.exception("sync status listener %r failed", listener)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)


__all__ = ["SyncStatus", "StatusListener", "StatusChannel"]
