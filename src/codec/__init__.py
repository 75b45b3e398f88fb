"""
State codec: value <-> URL-safe token.

The envelope header records which stages (compression, encryption) ran and
the logical schema version, so a token can always be decoded on its own.
"""

from .codec import SlugInfo, StateCodec
from .compression import CompressionAlgorithm, compress, decompress
from .encryption import GeneratedKeyProvider, KeyProvider, PasswordKeyProvider
from .envelope import FORMAT_VERSION, Envelope, EnvelopeFlags
from .migration import MigrationManager, MigrationStep
from .url import build_url, token_from_url

__all__ = [
    "StateCodec",
    "SlugInfo",
    "CompressionAlgorithm",
    "compress",
    "decompress",
    "KeyProvider",
    "PasswordKeyProvider",
    "GeneratedKeyProvider",
    "FORMAT_VERSION",
    "Envelope",
    "EnvelopeFlags",
    "MigrationManager",
    "MigrationStep",
    "build_url",
    "token_from_url",
]
