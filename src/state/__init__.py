"""
Local durable state for the offline-sync engine.

This package defines the SyncRecord schema (one per logical key, holding the
codec-encoded value plus sync bookkeeping) and the record stores that persist
it: in memory, in a JSON file, or in SQLite.
"""

from .models import SyncRecord, SyncState
from .stores import JsonFileRecordStore, MemoryRecordStore, RecordStore, SqliteRecordStore

__all__ = [
    "SyncRecord",
    "SyncState",
    "RecordStore",
    "MemoryRecordStore",
    "JsonFileRecordStore",
    "SqliteRecordStore",
]
