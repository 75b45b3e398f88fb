from __future__ import annotations

import base64
import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from common.errors import DecryptionError, StorageError


logger = logging.getLogger(__name__)

KEY_SIZE = 32
SALT_SIZE = 16
IV_SIZE = 12
TAG_SIZE = 16
PBKDF2_ITERATIONS = 100_000
_HKDF_INFO = b"slug-store/aes-256-gcm"


@dataclass(frozen=True)
class EncryptedPayload:
    ciphertext: bytes
    iv: bytes
    auth_tag: bytes


def encrypt(data: bytes, key: bytes) -> EncryptedPayload:
    """AES-256-GCM with a fresh random 96-bit IV."""
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes")
    iv = os.urandom(IV_SIZE)
    sealed = AESGCM(key).encrypt(iv, data, None)
    return EncryptedPayload(ciphertext=sealed[:-TAG_SIZE], iv=iv, auth_tag=sealed[-TAG_SIZE:])


def decrypt(ciphertext: bytes, iv: bytes, auth_tag: bytes, key: bytes) -> bytes:
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes")
    if len(iv) != IV_SIZE or len(auth_tag) != TAG_SIZE:
        raise DecryptionError("invalid IV or authentication tag length")
    try:
        return AESGCM(key).decrypt(iv, ciphertext + auth_tag, None)
    except InvalidTag as ex:
        raise DecryptionError("authentication failed: wrong key or tampered data") from ex


def derive_key(password: str | bytes, salt: bytes) -> bytes:
    """PBKDF2-HMAC-SHA256 password stretching to a 256-bit key."""
    secret = password.encode("utf-8") if isinstance(password, str) else password
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(secret)


def _expand_key(raw_key: bytes, salt: bytes) -> bytes:
    # Raw keys are already uniformly random; HKDF only binds them to the salt
    hkdf = HKDF(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=salt, info=_HKDF_INFO)
    return hkdf.derive(raw_key)


@dataclass(frozen=True)
class KeyMaterial:
    """
    A secret that can produce per-token AES keys.

    `password` material is stretched with PBKDF2; `raw` material (generated
    keys) is expanded with HKDF. Either way the salt is stored in the token.
    """

    secret: bytes
    kind: str = "password"

    @classmethod
    def from_password(cls, password: str) -> "KeyMaterial":
        if not password:
            raise ValueError("password must be non-empty")
        return cls(secret=password.encode("utf-8"), kind="password")

    @classmethod
    def from_raw(cls, key: bytes) -> "KeyMaterial":
        if len(key) != KEY_SIZE:
            raise ValueError(f"raw key must be {KEY_SIZE} bytes")
        return cls(secret=key, kind="raw")

    def derive(self, salt: bytes) -> bytes:
        if self.kind == "raw":
            return _expand_key(self.secret, salt)
        return derive_key(self.secret, salt)

    def __repr__(self) -> str:  # never leak the secret into logs
        return f"KeyMaterial(kind={self.kind!r})"


def seal(data: bytes, material: KeyMaterial) -> bytes:
    """Encrypt into the envelope payload layout `[salt][iv][ciphertext][tag]`."""
    salt = os.urandom(SALT_SIZE)
    enc = encrypt(data, material.derive(salt))
    return salt + enc.iv + enc.ciphertext + enc.auth_tag


def open_sealed(blob: bytes, candidates: List[KeyMaterial]) -> bytes:
    """Inverse of `seal`, trying each candidate key in order."""
    if len(blob) < SALT_SIZE + IV_SIZE + TAG_SIZE:
        raise DecryptionError("encrypted payload is truncated")
    if not candidates:
        raise DecryptionError("no key material available to decrypt")
    salt = blob[:SALT_SIZE]
    iv = blob[SALT_SIZE:SALT_SIZE + IV_SIZE]
    ciphertext = blob[SALT_SIZE + IV_SIZE:-TAG_SIZE]
    tag = blob[-TAG_SIZE:]
    for material in candidates[:-1]:
        try:
            return decrypt(ciphertext, iv, tag, material.derive(salt))
        except DecryptionError:
            continue
    return decrypt(ciphertext, iv, tag, candidates[-1].derive(salt))


# -------- Key providers --------
class KeyProvider(Protocol):
    """Source of key material handed to the codec at construction."""

    def current(self) -> KeyMaterial:
        """Key used for new tokens."""
        ...

    def candidates(self) -> List[KeyMaterial]:
        """Keys tried when decrypting, current first."""
        ...


class PasswordKeyProvider:
    def __init__(self, password: str) -> None:
        self._material = KeyMaterial.from_password(password)

    def current(self) -> KeyMaterial:
        return self._material

    def candidates(self) -> List[KeyMaterial]:
        return [self._material]


class GeneratedKeyProvider:
    """
    Random 256-bit key generated on first use and reused afterwards.

    Lifecycle
    - generate: lazily, the first time `current()` is called.
    - persist: when `path` is given, keys are written there (JSON, mode 0600)
      and loaded back on the next start.
    - rotate: `rotate()` makes a new current key; previous keys stay available
      for decoding older tokens.

    Without `path` the key lives only as long as this object. Tokens encrypted
    with it cannot be decrypted by any later process. That is an accepted
    limitation of keyless encryption, not something this class can recover from.
    """

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        self._path = Path(path) if path else None
        self._keys: List[bytes] = []  # newest first
        self._loaded = False
        self._lock = threading.Lock()

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if self._path is None or not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
            keys = [base64.urlsafe_b64decode(k) for k in raw.get("keys", [])]
        except (OSError, ValueError, AttributeError) as ex:
            raise StorageError(f"Failed to read key file {self._path}") from ex
        self._keys = [k for k in keys if len(k) == KEY_SIZE]

    def _save(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_name(self._path.name + ".tmp")
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"keys": [base64.urlsafe_b64encode(k).decode("ascii") for k in self._keys]}, f)
            os.replace(tmp, self._path)
        except OSError as ex:
            raise StorageError(f"Failed to write key file {self._path}") from ex

    def current(self) -> KeyMaterial:
        with self._lock:
            self._ensure_loaded()
            if not self._keys:
                self._keys.insert(0, AESGCM.generate_key(bit_length=256))
                self._save()
                logger.info("generated new default encryption key%s",
                            f" (persisted to {self._path})" if self._path else " (not persisted)")
            return KeyMaterial.from_raw(self._keys[0])

    def candidates(self) -> List[KeyMaterial]:
        with self._lock:
            self._ensure_loaded()
            return [KeyMaterial.from_raw(k) for k in self._keys]

    def rotate(self) -> KeyMaterial:
        with self._lock:
            self._ensure_loaded()
            self._keys.insert(0, AESGCM.generate_key(bit_length=256))
            self._save()
            logger.info("rotated encryption key; %d previous key(s) retained", len(self._keys) - 1)
            return KeyMaterial.from_raw(self._keys[0])


__all__ = [
    "EncryptedPayload",
    "KeyMaterial",
    "KeyProvider",
    "PasswordKeyProvider",
    "GeneratedKeyProvider",
    "encrypt",
    "decrypt",
    "derive_key",
    "seal",
    "open_sealed",
]
