from __future__ import annotations

from enum import Enum
from typing import Optional


class SlugStoreError(Exception):
    """Base error for every failure raised by slug-store."""


class EncodeError(SlugStoreError):
    """A value could not be serialized (or had no key material to encrypt with)."""


class DecodeFailure(str, Enum):
    MALFORMED = "malformed"
    DECRYPTION_FAILED = "decryption-failed"
    DECOMPRESSION_FAILED = "decompression-failed"
    VERSION_UNSUPPORTED = "version-unsupported"


class DecodeError(SlugStoreError):
    """
    A token could not be turned back into a value.

    `reason` names the pipeline stage that failed so callers can tell a
    truncated link apart from a wrong password or a token from a newer build.
    """

    def __init__(self, reason: DecodeFailure, message: Optional[str] = None) -> None:
        self.reason = DecodeFailure(reason)
        super().__init__(message or self.reason.value)

    def __str__(self) -> str:
        msg = super().__str__()
        if msg == self.reason.value:
            return msg
        return f"{self.reason.value}: {msg}"


class CompressionError(SlugStoreError):
    """Data flagged as compressed is not an intact zlib/xz container."""


class DecryptionError(SlugStoreError):
    """Authenticated decryption failed (wrong key or tampered ciphertext)."""


class MigrationError(SlugStoreError):
    """A schema migration step is missing or raised while transforming."""


class StorageError(SlugStoreError):
    """The local durable record store could not be read or written."""


class SyncError(SlugStoreError):
    """The remote transport failed; retried on the next background tick."""


class RemoteConflictError(SyncError):
    """The remote rejected a conditional write because its version moved on."""


class ConflictUnresolvedError(SlugStoreError):
    """A custom conflict strategy raised; the record stays in conflict."""

    def __init__(self, message: str, *, key: Optional[str] = None) -> None:
        self.key = key
        if key is not None:
            message = f"conflict for {key!r} left unresolved: {message}"
        super().__init__(message)


__all__ = [
    "SlugStoreError",
    "EncodeError",
    "DecodeFailure",
    "DecodeError",
    "CompressionError",
    "DecryptionError",
    "MigrationError",
    "StorageError",
    "SyncError",
    "RemoteConflictError",
    "ConflictUnresolvedError",
]
