from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from common.errors import RemoteConflictError, SyncError
from state.models import utcnow

from .transport import PushAck, RemoteSnapshot


logger = logging.getLogger(__name__)

# Environment variable names for convenience configuration
ENV_BUCKET = "SLUG_STORE_S3_BUCKET"
ENV_PREFIX = "SLUG_STORE_S3_PREFIX"


def _error_code(e: ClientError) -> Optional[str]:
    return e.response.get("Error", {}).get("Code")


class S3Transport:
    """
    S3 as the remote store: one object per key under `prefix`.

    Usage
    - `pull(key)` returns the token stored at `{prefix}{key}` with its ETag as
      the version, or None when the object does not exist.
    - `push(key, token, expected_version=etag)` is a conditional write: with
      an ETag it uses `IfMatch` (the object must still be at that version);
      without one it uses `IfNoneMatch="*"` (the object must not exist yet).
      A failed precondition raises RemoteConflictError.

    Environment variables (optional)
    - `SLUG_STORE_S3_BUCKET`: bucket holding the state objects
    - `SLUG_STORE_S3_PREFIX`: key prefix (default "slug-store/")
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        prefix: str = "slug-store/",
        region_name: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._bucket = bucket
        self._prefix = prefix

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls) -> "S3Transport":
        bucket = os.environ.get(ENV_BUCKET)
        if not bucket:
            raise RuntimeError(f"Missing required environment variables for S3 transport: {ENV_BUCKET}")
        prefix = os.environ.get(ENV_PREFIX) or "slug-store/"
        return cls(bucket=bucket, prefix=prefix)

    def _object_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    # -------- Core operations --------
    def pull(self, key: str) -> Optional[RemoteSnapshot]:
        try:
            resp = self._s3.get_object(Bucket=self._bucket, Key=self._object_key(key))
        except ClientError as e:
            if _error_code(e) in ("NoSuchKey", "404"):
                return None
            raise SyncError(f"S3 get_object failed for {key!r}: {_error_code(e)}") from e
        except BotoCoreError as e:
            raise SyncError(f"S3 unreachable while pulling {key!r}") from e

        body = resp["Body"].read()
        etag = resp.get("ETag")
        if not etag:
            raise SyncError(f"S3 object for {key!r} has no ETag")
        modified = resp.get("LastModified")
        if isinstance(modified, datetime) and modified.tzinfo is None:
            modified = modified.replace(tzinfo=timezone.utc)
        return RemoteSnapshot(
            token=body.decode("utf-8").strip(),
            version=str(etag),
            updated_at=modified if isinstance(modified, datetime) else utcnow(),
        )

    def push(self, key: str, token: str, *, expected_version: Optional[str] = None) -> PushAck:
        condition = {"IfMatch": expected_version} if expected_version else {"IfNoneMatch": "*"}
        try:
            resp = self._s3.put_object(
                Bucket=self._bucket,
                Key=self._object_key(key),
                Body=token.encode("utf-8"),
                ContentType="text/plain",
                **condition,
            )
        except ClientError as e:
            code = _error_code(e)
            if code in ("PreconditionFailed", "412", "ConditionalRequestConflict"):
                raise RemoteConflictError(
                    f"ETag mismatch for s3://{self._bucket}/{self._object_key(key)}"
                ) from e
            raise SyncError(f"S3 put_object failed for {key!r}: {code}") from e
        except BotoCoreError as e:
            raise SyncError(f"S3 unreachable while pushing {key!r}") from e

        return PushAck(version=str(resp.get("ETag")), updated_at=utcnow())


__all__ = ["S3Transport"]
