from __future__ import annotations

import itertools
from urllib.parse import quote

import pytest
from pydantic import BaseModel

from codec.codec import StateCodec
from codec.compression import CompressionAlgorithm
from codec.encryption import GeneratedKeyProvider, PasswordKeyProvider
from codec.envelope import FORMAT_VERSION, HEADER_SIZE, b64url_decode, b64url_encode
from codec.migration import MigrationManager, MigrationStep, add_field, rename_field
from common.errors import DecodeError, DecodeFailure, EncodeError


def _large_state(n: int = 120):
    return {"items": [{"id": i, "label": "repeated label text", "done": False} for i in range(n)]}


def _codec(**kwargs) -> StateCodec:
    return StateCodec(key_provider=PasswordKeyProvider("correct horse"), **kwargs)


def test_example_roundtrip_without_options():
    codec = _codec()
    value = {"count": 0, "message": "hi"}
    token = codec.encode(value, compress=False, encrypt=False)
    assert codec.decode(token) == value


@pytest.mark.parametrize(
    "compress,encrypt,algorithm",
    list(itertools.product([False, True], [False, True], ["fast", "strong"])),
)
def test_roundtrip_across_option_combinations(compress, encrypt, algorithm):
    codec = _codec()
    value = {"nested": {"list": [1, 2.5, None, True, "ü"]}, **_large_state(20)}
    token = codec.encode(value, compress=compress, encrypt=encrypt, algorithm=algorithm)
    assert codec.decode(token) == value


def test_compressed_token_is_shorter_for_large_input():
    codec = _codec()
    value = _large_state()
    plain = codec.encode(value)
    packed = codec.encode(value, compress=True)
    strong = codec.encode(value, compress=True, algorithm=CompressionAlgorithm.STRONG)
    assert len(packed) < len(plain)
    assert len(strong) < len(plain)


def test_unencrypted_encoding_is_deterministic():
    codec = _codec()
    a = codec.encode({"b": 1, "a": [1, 2]}, compress=True)
    b = codec.encode({"a": [1, 2], "b": 1}, compress=True)
    assert a == b


def test_encrypted_tokens_differ_but_decode_equal():
    codec = _codec()
    a = codec.encode({"x": 1}, encrypt=True)
    b = codec.encode({"x": 1}, encrypt=True)
    assert a != b
    assert codec.decode(a) == codec.decode(b) == {"x": 1}


def test_tampered_ciphertext_is_decryption_failed():
    codec = _codec()
    token = codec.encode({"secret": "value"}, encrypt=True)
    raw = bytearray(b64url_decode(token))
    raw[-1] ^= 0x01
    with pytest.raises(DecodeError) as ei:
        codec.decode(b64url_encode(bytes(raw)))
    assert ei.value.reason is DecodeFailure.DECRYPTION_FAILED


def test_wrong_password_is_decryption_failed():
    token = _codec().encode({"x": 1}, encrypt=True)
    other = StateCodec(key_provider=PasswordKeyProvider("wrong"))
    with pytest.raises(DecodeError) as ei:
        other.decode(token)
    assert ei.value.reason is DecodeFailure.DECRYPTION_FAILED


def test_per_call_password_overrides_provider():
    codec = StateCodec()
    token = codec.encode({"x": 1}, encrypt=True, password="per-call")
    assert codec.decode(token, password="per-call") == {"x": 1}
    with pytest.raises(DecodeError) as ei:
        codec.decode(token)
    assert ei.value.reason is DecodeFailure.DECRYPTION_FAILED


def test_encrypt_without_key_is_encode_error():
    with pytest.raises(EncodeError):
        StateCodec().encode({"x": 1}, encrypt=True)


def test_generated_key_provider_roundtrip():
    codec = StateCodec(key_provider=GeneratedKeyProvider())
    token = codec.encode({"card": "4111"}, encrypt=True, compress=True)
    assert codec.decode(token) == {"card": "4111"}


def test_unserializable_value_is_encode_error():
    loop = {}
    loop["self"] = loop
    with pytest.raises(EncodeError):
        _codec().encode(loop)
    with pytest.raises(EncodeError):
        _codec().encode({"v": float("nan")})
    with pytest.raises(EncodeError):
        _codec().encode({"v": object()})


def test_pydantic_model_is_encoded_as_json():
    class Prefs(BaseModel):
        theme: str
        size: int

    codec = _codec()
    token = codec.encode(Prefs(theme="dark", size=3))
    assert codec.decode(token) == {"theme": "dark", "size": 3}


def test_unknown_envelope_version_is_version_unsupported():
    codec = _codec()
    raw = bytearray(b64url_decode(codec.encode({"x": 1})))
    raw[0] = FORMAT_VERSION + 1
    with pytest.raises(DecodeError) as ei:
        codec.decode(b64url_encode(bytes(raw)))
    assert ei.value.reason is DecodeFailure.VERSION_UNSUPPORTED


def test_newer_schema_is_version_unsupported():
    newer = StateCodec(schema_version=2)
    older = StateCodec(schema_version=1)
    with pytest.raises(DecodeError) as ei:
        older.decode(newer.encode({"x": 1}))
    assert ei.value.reason is DecodeFailure.VERSION_UNSUPPORTED


def test_flagged_but_uncompressed_payload_is_decompression_failed():
    codec = _codec()
    raw = bytearray(b64url_decode(codec.encode({"x": 1})))
    raw[1] |= 0x01
    with pytest.raises(DecodeError) as ei:
        codec.decode(b64url_encode(bytes(raw)))
    assert ei.value.reason is DecodeFailure.DECOMPRESSION_FAILED


def test_non_json_payload_is_malformed():
    token = b64url_encode(bytes([FORMAT_VERSION, 0, 0, 0]) + b"not json")
    with pytest.raises(DecodeError) as ei:
        _codec().decode(token)
    assert ei.value.reason is DecodeFailure.MALFORMED


@pytest.mark.parametrize("token", ["", "%%%", "!!!!", None])
def test_garbage_tokens_are_malformed(token):
    with pytest.raises(DecodeError) as ei:
        _codec().decode(token)
    assert ei.value.reason is DecodeFailure.MALFORMED


def test_token_survives_url_quoting():
    codec = _codec()
    token = codec.encode({"q": "a b&c"}, compress=True)
    assert quote(token, safe="") == token
    assert codec.decode(quote(token)) == {"q": "a b&c"}


def test_old_schema_is_migrated_on_decode():
    v1 = StateCodec(schema_version=1)
    token = v1.encode({"name": "list"})

    migrations = MigrationManager(current_version=3)
    migrations.add_migration(MigrationStep(1, add_field("theme", "light")))
    migrations.add_migration(MigrationStep(2, rename_field("name", "title")))
    v3 = StateCodec(migrations=migrations)
    assert v3.schema_version == 3
    assert v3.decode(token) == {"title": "list", "theme": "light"}


def test_schema_version_must_match_migrations():
    with pytest.raises(ValueError):
        StateCodec(migrations=MigrationManager(2), schema_version=1)


def test_inspect_reads_header_without_key():
    token = _codec(schema_version=4).encode(_large_state(), compress=True, encrypt=True)
    info = StateCodec().inspect(token)
    assert info.version == FORMAT_VERSION
    assert info.schema_version == 4
    assert info.compressed and info.encrypted
    assert info.size == len(token)
    assert info.payload_size == len(b64url_decode(token)) - HEADER_SIZE


def test_is_valid_token():
    codec = _codec()
    assert codec.is_valid_token(codec.encode([1, 2, 3]))
    assert not codec.is_valid_token("@@@")
