from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Optional
from urllib.parse import quote

import httpx

from common.errors import RemoteConflictError, SyncError
from state.models import utcnow

from .transport import PushAck, RemoteSnapshot


logger = logging.getLogger(__name__)

_RETRYABLE = (429, 500, 502, 503, 504)


def _parse_http_date(value: Optional[str]) -> datetime:
    if not value:
        return utcnow()
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return utcnow()
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class HttpTransport:
    """
    Remote store reached over HTTP.

    Protocol
    - GET  {base_url}/{key} -> 200 with the token as the body and an ETag
      header, or 404 when the key is absent.
    - PUT  {base_url}/{key} with the token as the body. Sends `If-Match:
      <version>` when the last seen version is known, else `If-None-Match: *`.
      The server answers 412 when the precondition fails, which is raised as
      RemoteConflictError. The new ETag is returned as the version.

    Notes
    - Network errors and 429/5xx are retried with exponential backoff,
      honoring a numeric `Retry-After` header.
    - Any other failure surfaces as SyncError; the engine retries it on its
      next background tick.
    """

    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 15.0,
        max_attempts: int = 4,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=self._timeout)
        self._headers = dict(headers or {})

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def pull(self, key: str) -> Optional[RemoteSnapshot]:
        resp = self._request("GET", key)
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise SyncError(f"HTTP {resp.status_code} pulling {key!r}: {resp.text[:200]}")
        etag = resp.headers.get("ETag")
        if not etag:
            raise SyncError(f"Remote response for {key!r} has no ETag")
        token = resp.text.strip()
        if not token:
            raise SyncError(f"Remote copy of {key!r} has an ETag but an empty body")
        return RemoteSnapshot(
            token=token,
            version=etag,
            updated_at=_parse_http_date(resp.headers.get("Last-Modified")),
        )

    def push(self, key: str, token: str, *, expected_version: Optional[str] = None) -> PushAck:
        headers = {"Content-Type": "text/plain; charset=utf-8"}
        if expected_version is not None:
            headers["If-Match"] = expected_version
        else:
            headers["If-None-Match"] = "*"
        resp = self._request("PUT", key, content=token.encode("utf-8"), headers=headers)
        if resp.status_code == 412:
            raise RemoteConflictError(f"Remote version of {key!r} changed (412 Precondition Failed)")
        if resp.status_code not in (200, 201, 204):
            raise SyncError(f"HTTP {resp.status_code} pushing {key!r}: {resp.text[:200]}")
        etag = resp.headers.get("ETag")
        if not etag:
            raise SyncError(f"Remote did not return an ETag for {key!r}")
        return PushAck(version=etag, updated_at=_parse_http_date(resp.headers.get("Last-Modified")))

    # --------------- Internal ---------------
    def _url(self, key: str) -> str:
        return f"{self._base_url}/{quote(key, safe='')}"

    def _request(
        self,
        method: str,
        key: str,
        *,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        merged = {**self._headers, **(headers or {})}
        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            try:
                resp = self._client.request(method, self._url(key), content=content, headers=merged)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
                delay = backoff
            else:
                if resp.status_code not in _RETRYABLE:
                    return resp
                last_exc = SyncError(f"HTTP {resp.status_code} from {method} {key!r}")
                retry_after = resp.headers.get("Retry-After")
                try:
                    delay = float(retry_after) if retry_after is not None else backoff
                except ValueError:
                    delay = backoff

            attempt += 1
            if attempt >= self._max_attempts:
                break
            logger.warning("%s %s failed (attempt %d/%d), retrying in %.1fs",
                           method, key, attempt, self._max_attempts, delay)
            time.sleep(min(delay, 10.0))
            backoff = min(backoff * 2, 8.0)

        raise SyncError(f"{method} {key!r} failed after {self._max_attempts} attempts") from last_exc


__all__ = ["HttpTransport"]
