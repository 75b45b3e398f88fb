from __future__ import annotations

import json
import os
import sqlite3
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError

from common.errors import StorageError

from .models import SyncRecord, utcnow


Clock = Callable[[], datetime]


class RecordStore(Protocol):
    """Key-value boundary for local durable storage of SyncRecords."""

    def get(self, key: str) -> Optional[SyncRecord]:
        ...

    def put(self, record: SyncRecord) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self) -> List[str]:
        ...


class _TtlMixin:
    """
    Optional expiry for clean records.

    A record older than `ttl` seconds (by `updated_at`) is treated as absent
    and purged on read. Dirty records never expire: they hold the only copy of
    unsynced changes.
    """

    _ttl: Optional[float]
    _clock: Clock

    def _expired(self, record: SyncRecord) -> bool:
        if self._ttl is None or record.dirty:
            return False
        return self._clock() - record.updated_at > timedelta(seconds=self._ttl)


class MemoryRecordStore(_TtlMixin):
    """Process-local store; useful for tests and short-lived sessions."""

    def __init__(self, *, ttl: Optional[float] = None, clock: Clock = utcnow) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._ttl = ttl
        self._clock = clock

    def get(self, key: str) -> Optional[SyncRecord]:
        with self._lock:
            raw = self._data.get(key)
            if raw is None:
                return None
            record = SyncRecord.model_validate_json(raw)
            if self._expired(record):
                del self._data[key]
                return None
            return record

    def put(self, record: SyncRecord) -> None:
        # Stored serialized so callers never share a mutable record with the store
        with self._lock:
            self._data[record.key] = record.model_dump_json()

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)


class JsonFileRecordStore(_TtlMixin):
    """
    Records kept in a single JSON file: { key: record, ... }.

    - Loaded lazily on first access, rewritten atomically (temp file + rename)
      on every change.
    - A corrupt or unreadable file raises StorageError rather than being
      discarded, since it may hold unsynced changes.
    """

    def __init__(
        self,
        path: os.PathLike[str] | str,
        *,
        ttl: Optional[float] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._path = Path(path)
        self._data: Dict[str, Dict[str, object]] = {}
        self._loaded = False
        self._lock = threading.Lock()
        self._ttl = ttl
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if self._path.exists():
            try:
                with self._path.open("r", encoding="utf-8") as f:
                    raw = json.load(f)
            except (OSError, ValueError) as ex:
                raise StorageError(f"Failed to read record file {self._path}") from ex
            if not isinstance(raw, dict):
                raise StorageError(f"Record file {self._path} does not hold an object")
            self._data = {str(k): v for k, v in raw.items() if isinstance(v, dict)}
        self._loaded = True

    def _save(self) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        except OSError as ex:
            raise StorageError(f"Failed to write record file {self._path}") from ex

    def get(self, key: str) -> Optional[SyncRecord]:
        with self._lock:
            self._ensure_loaded()
            raw = self._data.get(key)
            if raw is None:
                return None
            try:
                record = SyncRecord.model_validate(raw)
            except ValidationError as ex:
                raise StorageError(f"Invalid record for {key!r} in {self._path}") from ex
            if self._expired(record):
                del self._data[key]
                self._save()
                return None
            return record

    def put(self, record: SyncRecord) -> None:
        with self._lock:
            self._ensure_loaded()
            self._data[record.key] = record.model_dump(mode="json")
            self._save()

    def delete(self, key: str) -> None:
        with self._lock:
            self._ensure_loaded()
            if self._data.pop(key, None) is not None:
                self._save()

    def keys(self) -> List[str]:
        with self._lock:
            self._ensure_loaded()
            return sorted(self._data)


class SqliteRecordStore(_TtlMixin):
    """Records in an SQLite table, one row per key holding the record JSON."""

    def __init__(
        self,
        db_path: str,
        *,
        ttl: Optional[float] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.db_path = db_path
        # The engine calls stores from its background thread as well
        self.db: Optional[sqlite3.Connection] = sqlite3.connect(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._ttl = ttl
        self._clock = clock
        self._init_tables()

    def _init_tables(self) -> None:
        with self._lock, self._conn():
            self._conn().execute(
                """
                CREATE TABLE IF NOT EXISTS sync_records (
                    key TEXT PRIMARY KEY,
                    record TEXT NOT NULL,
                    dirty INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def _conn(self) -> sqlite3.Connection:
        if self.db is None:
            raise StorageError("SqliteRecordStore is closed")
        return self.db

    def get(self, key: str) -> Optional[SyncRecord]:
        with self._lock:
            try:
                row = self._conn().execute(
                    "SELECT record FROM sync_records WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.Error as ex:
                raise StorageError(f"Failed to read record {key!r}") from ex
            if row is None:
                return None
            try:
                record = SyncRecord.model_validate_json(row[0])
            except ValidationError as ex:
                raise StorageError(f"Invalid record for {key!r} in {self.db_path}") from ex
            if self._expired(record):
                try:
                    with self._conn():
                        self._conn().execute("DELETE FROM sync_records WHERE key = ?", (key,))
                except sqlite3.Error as ex:
                    raise StorageError(f"Failed to expire record {key!r}") from ex
                return None
            return record

    def put(self, record: SyncRecord) -> None:
        with self._lock:
            try:
                with self._conn():
                    self._conn().execute(
                        """INSERT OR REPLACE INTO sync_records (key, record, dirty, updated_at)
                           VALUES (?, ?, ?, ?)""",
                        (record.key, record.model_dump_json(), int(record.dirty), record.updated_at.isoformat()),
                    )
            except sqlite3.Error as ex:
                raise StorageError(f"Failed to write record {record.key!r}") from ex

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                with self._conn():
                    self._conn().execute("DELETE FROM sync_records WHERE key = ?", (key,))
            except sqlite3.Error as ex:
                raise StorageError(f"Failed to delete record {key!r}") from ex

    def keys(self) -> List[str]:
        with self._lock:
            try:
                rows = self._conn().execute("SELECT key FROM sync_records ORDER BY key").fetchall()
            except sqlite3.Error as ex:
                raise StorageError(f"Failed to list records in {self.db_path}") from ex
        return [r[0] for r in rows]

    def close(self) -> None:
        with self._lock:
            if self.db is not None:
                self.db.close()
                self.db = None

    def __enter__(self) -> "SqliteRecordStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "RecordStore",
    "MemoryRecordStore",
    "JsonFileRecordStore",
    "SqliteRecordStore",
]
