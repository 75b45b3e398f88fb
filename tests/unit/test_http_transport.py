from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Tuple

import httpx
import pytest

from codec.codec import StateCodec
from common.errors import RemoteConflictError, SyncError
from state.stores import MemoryRecordStore
from sync.engine import OfflineSyncEngine, SyncOutcome
from sync.http_transport import HttpTransport


BASE = "https://sync.example/state"


def _transport(handler, **kwargs) -> HttpTransport:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpTransport(BASE, client=client, **kwargs)


@pytest.fixture
def sleeps(monkeypatch) -> List[float]:
    calls: List[float] = []
    monkeypatch.setattr("sync.http_transport.time.sleep", lambda s: calls.append(s))
    return calls


class _FakeServer:
    """Tiny ETag-checking key/value server."""

    def __init__(self) -> None:
        self.data: Dict[str, Tuple[str, str]] = {}
        self.counter = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = request.url.path.rsplit("/", 1)[-1]
        current = self.data.get(key)
        if request.method == "GET":
            if current is None:
                return httpx.Response(404)
            return httpx.Response(200, text=current[0], headers={"ETag": current[1]})
        if_match = request.headers.get("If-Match")
        if_none = request.headers.get("If-None-Match")
        if if_none == "*" and current is not None:
            return httpx.Response(412)
        if if_match is not None and (current is None or current[1] != if_match):
            return httpx.Response(412)
        self.counter += 1
        etag = f'"e{self.counter}"'
        self.data[key] = (request.content.decode("utf-8"), etag)
        return httpx.Response(201 if current is None else 200, headers={"ETag": etag})


def test_pull_returns_snapshot_with_etag_and_date():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert str(request.url) == f"{BASE}/todos"
        return httpx.Response(
            200,
            text="TOKEN\n",
            headers={"ETag": '"abc"', "Last-Modified": "Wed, 01 Jan 2025 10:00:00 GMT"},
        )

    snap = _transport(handler).pull("todos")
    assert snap.token == "TOKEN"
    assert snap.version == '"abc"'
    assert snap.updated_at == datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


def test_pull_missing_key_is_none():
    assert _transport(lambda r: httpx.Response(404)).pull("k") is None


def test_pull_without_etag_is_sync_error():
    with pytest.raises(SyncError):
        _transport(lambda r: httpx.Response(200, text="TOKEN")).pull("k")


def test_pull_empty_body_with_etag_is_sync_error_not_absent():
    with pytest.raises(SyncError, match="empty body"):
        _transport(lambda r: httpx.Response(200, text="  ", headers={"ETag": '"e1"'})).pull("k")


def test_pull_unexpected_status_is_sync_error():
    with pytest.raises(SyncError) as ei:
        _transport(lambda r: httpx.Response(403, text="forbidden")).pull("k")
    assert "403" in str(ei.value)


def test_push_new_key_sends_if_none_match():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["headers"] = request.headers
        seen["body"] = request.content
        return httpx.Response(201, headers={"ETag": '"v1"'})

    ack = _transport(handler, headers={"Authorization": "Bearer t"}).push("k", "TOKEN")
    assert ack.version == '"v1"'
    assert seen["method"] == "PUT"
    assert seen["body"] == b"TOKEN"
    assert seen["headers"]["If-None-Match"] == "*"
    assert "If-Match" not in seen["headers"]
    assert seen["headers"]["Authorization"] == "Bearer t"


def test_push_existing_key_sends_if_match():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["if_match"] = request.headers.get("If-Match")
        return httpx.Response(204, headers={"ETag": '"v2"'})

    ack = _transport(handler).push("k", "TOKEN", expected_version='"v1"')
    assert seen["if_match"] == '"v1"'
    assert ack.version == '"v2"'


def test_push_precondition_failed_is_remote_conflict():
    with pytest.raises(RemoteConflictError):
        _transport(lambda r: httpx.Response(412)).push("k", "T", expected_version='"old"')


def test_push_without_etag_is_sync_error():
    with pytest.raises(SyncError):
        _transport(lambda r: httpx.Response(200)).push("k", "T")


def test_retries_server_errors_with_backoff(sleeps):
    responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(404)])
    assert _transport(lambda r: next(responses)).pull("k") is None
    assert sleeps == [0.5, 1.0]


def test_retry_after_header_is_honored(sleeps):
    responses = iter([httpx.Response(429, headers={"Retry-After": "3"}), httpx.Response(404)])
    _transport(lambda r: next(responses)).pull("k")
    assert sleeps == [3.0]


def test_exhausted_retries_raise_sync_error(sleeps):
    t = _transport(lambda r: httpx.Response(500), max_attempts=3)
    with pytest.raises(SyncError) as ei:
        t.pull("k")
    assert "after 3 attempts" in str(ei.value)
    assert len(sleeps) == 2


def test_network_errors_are_retried_then_raised(sleeps):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SyncError) as ei:
        _transport(handler, max_attempts=2).push("k", "T")
    assert isinstance(ei.value.__cause__, httpx.ConnectError)
    assert sleeps == [0.5]


def test_keys_are_percent_encoded():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["raw_path"] = request.url.raw_path
        return httpx.Response(404)

    _transport(handler).pull("a/b c")
    assert seen["raw_path"] == b"/state/a%2Fb%20c"


def test_invalid_construction():
    with pytest.raises(ValueError):
        HttpTransport("")
    with pytest.raises(ValueError):
        HttpTransport(BASE, max_attempts=0)


def test_engine_syncs_through_http_transport():
    server = _FakeServer()
    codec = StateCodec()
    with _transport(server) as transport:
        engine = OfflineSyncEngine(codec=codec, store=MemoryRecordStore(), transport=transport)
        engine.set_state("todos", {"todos": [{"id": 1}]})
        assert engine.sync("todos") is SyncOutcome.PUSHED

        server.data["todos"] = (codec.encode({"todos": [{"id": 2}]}), '"other"')
        engine.set_state("todos", {"todos": [{"id": 1}, {"id": 3}]})
        assert engine.sync("todos") is SyncOutcome.RESOLVED

    merged = codec.decode(server.data["todos"][0])
    assert sorted(t["id"] for t in merged["todos"]) == [1, 2, 3]
