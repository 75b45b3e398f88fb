from __future__ import annotations

import base64
import binascii
import struct
from dataclasses import dataclass
from enum import IntFlag

from common.errors import DecodeError, DecodeFailure


FORMAT_VERSION = 1
SUPPORTED_VERSIONS = frozenset({FORMAT_VERSION})

# [version:1B][flags:1B][schema_version:2B big-endian]
_HEADER = struct.Struct(">BBH")
HEADER_SIZE = _HEADER.size


class EnvelopeFlags(IntFlag):
    NONE = 0
    COMPRESSED = 0x01
    ENCRYPTED = 0x02


_KNOWN_FLAGS = EnvelopeFlags.COMPRESSED | EnvelopeFlags.ENCRYPTED


@dataclass(frozen=True)
class Envelope:
    """
    Self-describing container for one encoded value.

    The flags say which stages ran at encode time, so decoding never relies on
    settings the caller has to remember. `schema_version` is the logical state
    schema used for migrations; `version` is the envelope format itself.
    """

    flags: EnvelopeFlags
    schema_version: int
    payload: bytes
    version: int = FORMAT_VERSION

    @property
    def compressed(self) -> bool:
        return bool(self.flags & EnvelopeFlags.COMPRESSED)

    @property
    def encrypted(self) -> bool:
        return bool(self.flags & EnvelopeFlags.ENCRYPTED)

    def to_bytes(self) -> bytes:
        if not 0 <= self.schema_version <= 0xFFFF:
            raise ValueError(f"schema_version out of range: {self.schema_version}")
        return _HEADER.pack(self.version, int(self.flags), self.schema_version) + self.payload

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Envelope":
        if len(raw) < HEADER_SIZE:
            raise DecodeError(DecodeFailure.MALFORMED, "token too short for envelope header")
        version, flags, schema_version = _HEADER.unpack_from(raw)
        # Unknown versions are rejected before the rest of the header is trusted
        if version not in SUPPORTED_VERSIONS:
            raise DecodeError(
                DecodeFailure.VERSION_UNSUPPORTED, f"unsupported envelope version {version}"
            )
        if flags & ~int(_KNOWN_FLAGS):
            raise DecodeError(DecodeFailure.MALFORMED, f"unknown envelope flags 0x{flags:02x}")
        return cls(
            flags=EnvelopeFlags(flags),
            schema_version=schema_version,
            payload=bytes(raw[HEADER_SIZE:]),
            version=version,
        )

    def to_token(self) -> str:
        return b64url_encode(self.to_bytes())

    @classmethod
    def from_token(cls, token: str) -> "Envelope":
        return cls.from_bytes(b64url_decode(token))


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(token: str) -> bytes:
    if not isinstance(token, str) or not token:
        raise DecodeError(DecodeFailure.MALFORMED, "token must be a non-empty string")
    stripped = token.strip().rstrip("=")
    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as ex:
        raise DecodeError(DecodeFailure.MALFORMED, "token is not valid base64url") from ex


__all__ = [
    "FORMAT_VERSION",
    "HEADER_SIZE",
    "Envelope",
    "EnvelopeFlags",
    "b64url_encode",
    "b64url_decode",
]
