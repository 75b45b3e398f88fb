from __future__ import annotations

import logging
from typing import Any, List, Optional
from urllib.parse import unquote

from pydantic import BaseModel

from common import canonical
from common.errors import (
    CompressionError,
    DecodeError,
    DecodeFailure,
    DecryptionError,
    EncodeError,
)

from .compression import CompressionAlgorithm, decompress_strict
from .compression import compress as compress_payload
from .encryption import KeyMaterial, KeyProvider, open_sealed, seal
from .envelope import Envelope, EnvelopeFlags
from .migration import MigrationManager


logger = logging.getLogger(__name__)


class SlugInfo(BaseModel):
    """Header facts about a token, readable without the key."""

    version: int
    schema_version: int
    compressed: bool
    encrypted: bool
    size: int
    payload_size: int


class StateCodec:
    """
    Turns JSON-compatible values into URL-safe tokens and back.

    Pipeline
    - encode: canonical JSON -> compress? -> encrypt? -> envelope -> base64url
    - decode: unquote -> base64url -> envelope -> decrypt? -> decompress? -> JSON -> migrate?

    Which stages run on decode is read from the envelope flags only; nothing
    from the encode-time call has to be repeated. The codec holds no mutable
    state of its own and is safe to share between threads.
    """

    def __init__(
        self,
        *,
        key_provider: Optional[KeyProvider] = None,
        migrations: Optional[MigrationManager] = None,
        schema_version: Optional[int] = None,
        compression_algorithm: CompressionAlgorithm | str = CompressionAlgorithm.FAST,
    ) -> None:
        if migrations is None:
            migrations = MigrationManager(schema_version or 0)
        elif schema_version is not None and schema_version != migrations.current_version:
            raise ValueError("schema_version disagrees with migrations.current_version")
        self._keys = key_provider
        self._migrations = migrations
        self._algorithm = CompressionAlgorithm(compression_algorithm)

    @property
    def schema_version(self) -> int:
        return self._migrations.current_version

    @property
    def migrations(self) -> MigrationManager:
        return self._migrations

    # -------- Encode --------
    def encode(
        self,
        value: Any,
        *,
        compress: bool = False,
        encrypt: bool = False,
        password: Optional[str] = None,
        algorithm: Optional[CompressionAlgorithm | str] = None,
    ) -> str:
        """
        Encode `value` into a token.

        Raises EncodeError if the value is not JSON-serializable (circular
        references, unsupported types, NaN) or if encryption is requested with
        neither a password nor a key provider.
        """
        try:
            data = canonical.dump_bytes(value)
        except (TypeError, ValueError, RecursionError) as ex:
            raise EncodeError(f"Value is not JSON-serializable: {ex}") from ex

        flags = EnvelopeFlags.NONE
        if compress:
            algo = CompressionAlgorithm(algorithm) if algorithm is not None else self._algorithm
            if algo is not CompressionAlgorithm.NONE:
                data = compress_payload(data, algo)
                flags |= EnvelopeFlags.COMPRESSED

        if encrypt:
            data = seal(data, self._encryption_key(password))
            flags |= EnvelopeFlags.ENCRYPTED

        env = Envelope(flags=flags, schema_version=self.schema_version, payload=data)
        token = env.to_token()
        logger.debug("encoded token flags=0x%02x (%d chars)", int(flags), len(token))
        return token

    def _encryption_key(self, password: Optional[str]) -> KeyMaterial:
        if password:
            return KeyMaterial.from_password(password)
        if self._keys is None:
            raise EncodeError("Encryption requested but no password or key provider configured")
        return self._keys.current()

    def _decryption_keys(self, password: Optional[str]) -> List[KeyMaterial]:
        if password:
            return [KeyMaterial.from_password(password)]
        if self._keys is None:
            return []
        return self._keys.candidates()

    # -------- Decode --------
    def decode(self, token: str, *, password: Optional[str] = None) -> Any:
        """
        Decode a token produced by `encode`.

        Raises DecodeError with the failing stage as `reason`, or MigrationError
        when the token's schema is older and a migration step is missing.
        """
        env = self._parse(token)
        if env.schema_version > self.schema_version:
            raise DecodeError(
                DecodeFailure.VERSION_UNSUPPORTED,
                f"token schema v{env.schema_version} is newer than supported v{self.schema_version}",
            )

        data = env.payload
        if env.encrypted:
            try:
                data = open_sealed(data, self._decryption_keys(password))
            except DecryptionError as ex:
                raise DecodeError(DecodeFailure.DECRYPTION_FAILED, str(ex)) from ex

        if env.compressed:
            try:
                data = decompress_strict(data)
            except CompressionError as ex:
                raise DecodeError(DecodeFailure.DECOMPRESSION_FAILED, str(ex)) from ex

        try:
            value = canonical.load_bytes(data)
        except (UnicodeDecodeError, ValueError) as ex:
            raise DecodeError(DecodeFailure.MALFORMED, "payload is not valid JSON") from ex

        if self._migrations.needs_migration(env.schema_version):
            value = self._migrations.migrate(value, env.schema_version)
        return value

    @staticmethod
    def _parse(token: str) -> Envelope:
        if not isinstance(token, str):
            raise DecodeError(DecodeFailure.MALFORMED, "token must be a string")
        # Tokens pasted from a browser may still carry percent-escapes
        return Envelope.from_token(unquote(token))

    # -------- Introspection --------
    def inspect(self, token: str) -> SlugInfo:
        """Describe a token without decrypting it."""
        env = self._parse(token)
        return SlugInfo(
            version=env.version,
            schema_version=env.schema_version,
            compressed=env.compressed,
            encrypted=env.encrypted,
            size=len(token),
            payload_size=len(env.payload),
        )

    def is_valid_token(self, token: str) -> bool:
        try:
            self._parse(token)
        except DecodeError:
            return False
        return True


__all__ = ["StateCodec", "SlugInfo"]
