from __future__ import annotations

import logging
from urllib.parse import parse_qs, urlsplit

from codec.codec import StateCodec
from codec.url import URL_LENGTH_BUDGET, build_url, fits_in_url, token_from_url


def test_build_url_adds_token_param():
    url = build_url("https://app.example/list", "abc_-123")
    assert url == "https://app.example/list?s=abc_-123"
    assert token_from_url(url) == "abc_-123"


def test_build_url_preserves_other_params_and_fragment():
    url = build_url("https://app.example/?tab=2&s=old#top", "new", param="s")
    parts = urlsplit(url)
    assert parts.fragment == "top"
    assert parse_qs(parts.query) == {"tab": ["2"], "s": ["new"]}


def test_custom_param_name():
    url = build_url("https://app.example/", "tok", param="state")
    assert token_from_url(url, param="state") == "tok"
    assert token_from_url(url) is None


def test_token_from_url_missing_or_empty():
    assert token_from_url("https://app.example/") is None
    assert token_from_url("https://app.example/?s=") is None


def test_codec_token_roundtrips_through_url():
    codec = StateCodec()
    token = codec.encode({"filters": ["open", "mine"]}, compress=True)
    url = build_url("https://app.example/board", token)
    assert codec.decode(token_from_url(url)) == {"filters": ["open", "mine"]}


def test_oversized_url_logs_warning(caplog):
    caplog.set_level(logging.WARNING, logger="codec.url")
    build_url("https://app.example/", "x" * (URL_LENGTH_BUDGET + 1))
    assert any("budget" in r.getMessage() for r in caplog.records)


def test_fits_in_url():
    assert fits_in_url("x" * 100)
    assert not fits_in_url("x" * 100, base_length=URL_LENGTH_BUDGET)
