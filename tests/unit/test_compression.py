from __future__ import annotations

import json

import pytest

from codec.compression import (
    CompressionAlgorithm,
    compress,
    decompress,
    decompress_strict,
    detect_algorithm,
)
from common.errors import CompressionError


def _payload(n: int = 200) -> bytes:
    items = [{"id": i, "title": f"todo #{i}", "done": i % 3 == 0} for i in range(n)]
    return json.dumps({"items": items}).encode("utf-8")


@pytest.mark.parametrize("algo", [CompressionAlgorithm.FAST, CompressionAlgorithm.STRONG])
def test_compress_shrinks_repetitive_json_and_is_detected(algo):
    data = _payload()
    packed = compress(data, algo)
    assert len(packed) < len(data)
    assert detect_algorithm(packed) is algo
    assert decompress_strict(packed) == data
    assert decompress(packed) == data


def test_compress_is_deterministic():
    data = _payload(50)
    assert compress(data, "fast") == compress(data, "fast")
    assert compress(data, "strong") == compress(data, "strong")


def test_none_algorithm_is_identity():
    data = b'{"a":1}'
    assert compress(data, CompressionAlgorithm.NONE) is data
    assert detect_algorithm(data) is CompressionAlgorithm.NONE


def test_decompress_passes_plain_json_through():
    data = b'{"count":0,"message":"hi"}'
    assert decompress(data) == data


def test_decompress_returns_unrecognized_input_unchanged():
    data = b"\x00\x01not-compressed"
    assert decompress(data) == data


def test_decompress_strict_rejects_unrecognized_input():
    with pytest.raises(CompressionError):
        decompress_strict(b"plain bytes")


def test_decompress_strict_rejects_truncated_zlib():
    packed = compress(_payload(), CompressionAlgorithm.FAST)
    with pytest.raises(CompressionError):
        decompress_strict(packed[: len(packed) // 2])


def test_decompress_strict_rejects_corrupt_xz():
    packed = bytearray(compress(_payload(), CompressionAlgorithm.STRONG))
    packed[len(packed) // 2] ^= 0xFF
    with pytest.raises(CompressionError):
        decompress_strict(bytes(packed))
