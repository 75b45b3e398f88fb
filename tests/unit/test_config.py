from __future__ import annotations

import pytest

from common.config import Settings


_ALL = [
    "SLUG_STORE_PASSWORD",
    "SLUG_STORE_KEY_FILE",
    "SLUG_STORE_DATA_FILE",
    "SLUG_STORE_SYNC_URL",
    "SLUG_STORE_S3_BUCKET",
    "SLUG_STORE_S3_PREFIX",
    "SLUG_STORE_SYNC_INTERVAL",
    "SLUG_STORE_URL_PARAM",
    "SLUG_STORE_AUTO_CONFIG",
    "SLUG_STORE_CONFLICT_STRATEGY",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ALL:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_environment():
    s = Settings.from_env()
    assert s.password is None
    assert s.data_file == ".slug-store/records.json"
    assert s.s3_prefix == "slug-store/"
    assert s.sync_interval == 30.0
    assert s.url_param == "s"
    assert s.auto_config == "binding"
    assert s.conflict_strategy == "merge"


def test_reads_values_from_environment(monkeypatch):
    monkeypatch.setenv("SLUG_STORE_PASSWORD", "pw")
    monkeypatch.setenv("SLUG_STORE_SYNC_URL", "https://sync.example/state")
    monkeypatch.setenv("SLUG_STORE_SYNC_INTERVAL", "5")
    monkeypatch.setenv("SLUG_STORE_AUTO_CONFIG", "advisory")
    monkeypatch.setenv("SLUG_STORE_CONFLICT_STRATEGY", "server-wins")
    monkeypatch.setenv("SLUG_STORE_URL_PARAM", "state")

    s = Settings.from_env()
    assert s.password == "pw"
    assert s.sync_url == "https://sync.example/state"
    assert s.sync_interval == 5.0
    assert s.auto_config == "advisory"
    assert s.conflict_strategy == "server-wins"
    assert s.url_param == "state"


def test_empty_values_are_treated_as_unset(monkeypatch):
    monkeypatch.setenv("SLUG_STORE_DATA_FILE", "")
    assert Settings.from_env().data_file == ".slug-store/records.json"


def test_invalid_values_name_the_variables(monkeypatch):
    monkeypatch.setenv("SLUG_STORE_AUTO_CONFIG", "sometimes")
    monkeypatch.setenv("SLUG_STORE_SYNC_INTERVAL", "soon")
    with pytest.raises(RuntimeError) as ei:
        Settings.from_env()
    msg = str(ei.value)
    assert "SLUG_STORE_AUTO_CONFIG" in msg
    assert "SLUG_STORE_SYNC_INTERVAL" in msg
    assert "SLUG_STORE_CONFLICT_STRATEGY" not in msg
