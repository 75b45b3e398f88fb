"""
Offline-first synchronization.

Local writes land in a RecordStore immediately; `OfflineSyncEngine` pushes
them to a RemoteTransport (in memory, HTTP or S3) on demand or on a
background interval, resolving concurrent remote changes with a conflict
strategy.
"""

from .conflict import ConflictSide, ConflictStrategy, Resolution, deep_merge, resolve
from .engine import OfflineSyncEngine, SyncOutcome
from .http_transport import HttpTransport
from .s3_transport import S3Transport
from .status import StatusChannel, SyncStatus
from .transport import MemoryTransport, PushAck, RemoteSnapshot, RemoteTransport

__all__ = [
    "ConflictStrategy",
    "ConflictSide",
    "Resolution",
    "deep_merge",
    "resolve",
    "OfflineSyncEngine",
    "SyncOutcome",
    "SyncStatus",
    "StatusChannel",
    "RemoteTransport",
    "RemoteSnapshot",
    "PushAck",
    "MemoryTransport",
    "HttpTransport",
    "S3Transport",
]
