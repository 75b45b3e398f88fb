from __future__ import annotations

import json
import logging
import lzma
import zlib
from enum import Enum

from common.errors import CompressionError


logger = logging.getLogger(__name__)

# xz container magic (lzma.FORMAT_XZ)
_XZ_MAGIC = b"\xfd7zXZ\x00"
_FAST_LEVEL = 1
_STRONG_PRESET = 9


class CompressionAlgorithm(str, Enum):
    NONE = "none"
    FAST = "fast"
    STRONG = "strong"


def compress(data: bytes, algorithm: CompressionAlgorithm | str = CompressionAlgorithm.FAST) -> bytes:
    """
    Compress `data` with the requested algorithm.

    - fast: zlib at level 1.
    - strong: xz (LZMA2) at preset 9, better ratio for large payloads.
    - none: returned unchanged.

    Both containers carry their own header, so `decompress` does not need to
    be told which one was used. Output is deterministic for equal input.
    """
    algo = CompressionAlgorithm(algorithm)
    if algo is CompressionAlgorithm.NONE:
        return data
    if algo is CompressionAlgorithm.FAST:
        return zlib.compress(data, _FAST_LEVEL)
    return lzma.compress(data, format=lzma.FORMAT_XZ, preset=_STRONG_PRESET)


def _looks_like_zlib(data: bytes) -> bool:
    if len(data) < 2:
        return False
    cmf, flg = data[0], data[1]
    return (cmf & 0x0F) == 8 and (cmf >> 4) <= 7 and ((cmf << 8) | flg) % 31 == 0


def _looks_like_serialized(data: bytes) -> bool:
    """Cheap probe: is this already UTF-8 JSON text?"""
    try:
        json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return False
    return True


def detect_algorithm(data: bytes) -> CompressionAlgorithm:
    if data.startswith(_XZ_MAGIC):
        return CompressionAlgorithm.STRONG
    if _looks_like_zlib(data):
        return CompressionAlgorithm.FAST
    return CompressionAlgorithm.NONE


def decompress_strict(data: bytes) -> bytes:
    """Decompress a zlib or xz container, raising CompressionError otherwise."""
    algo = detect_algorithm(data)
    try:
        if algo is CompressionAlgorithm.STRONG:
            return lzma.decompress(data, format=lzma.FORMAT_XZ)
        if algo is CompressionAlgorithm.FAST:
            d = zlib.decompressobj()
            out = d.decompress(data) + d.flush()
            if not d.eof or d.unused_data:
                raise CompressionError("zlib stream is truncated or has trailing data")
            return out
    except (zlib.error, lzma.LZMAError, EOFError) as ex:
        raise CompressionError(f"corrupt {algo.value} stream") from ex
    raise CompressionError("data is not a recognized compressed container")


def decompress(data: bytes) -> bytes:
    """
    Best-effort decompression.

    Data that already parses as JSON, or that is not a recognizable intact
    container, is returned unchanged instead of raising: compression is a size
    optimization, never a correctness requirement.
    """
    if _looks_like_serialized(data):
        return data
    try:
        return decompress_strict(data)
    except CompressionError:
        logger.debug("decompress: input is not compressed, passing through (%d bytes)", len(data))
        return data


__all__ = [
    "CompressionAlgorithm",
    "compress",
    "decompress",
    "decompress_strict",
    "detect_algorithm",
]
