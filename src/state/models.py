from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncState(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    SYNCING = "syncing"
    CONFLICT = "conflict"


class SyncRecord(BaseModel):
    """
    Local durable record for one logical key.

    Fields
    - token: the value encoded by the state codec. Local storage is written
      through the codec, so encryption/compression apply at rest too.
    - version: logical state version, bumped on every local write. Unrelated to
      the envelope format version; used to notice writes made while a sync
      was in flight.
    - updated_at: when the local value last changed (UTC).
    - dirty: changed locally and not yet acknowledged by the remote.
    - status: clean | dirty | syncing | conflict.
    - remote_version: the remote's version tag (e.g. an ETag) last pushed or
      adopted. A remote reporting a different tag has changed since.
    - conflict_*: the remote side held while the record is in conflict.

    Notes
    - Only the offline-sync engine mutates records; stores just persist them.
    """

    key: str
    token: str
    version: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)
    dirty: bool = False
    status: SyncState = SyncState.CLEAN
    remote_version: Optional[str] = None
    conflict_token: Optional[str] = None
    conflict_version: Optional[str] = None
    conflict_updated_at: Optional[datetime] = None

    @property
    def in_conflict(self) -> bool:
        return self.status is SyncState.CONFLICT
