from __future__ import annotations

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationError


# Environment variable names for convenience configuration
ENV_PASSWORD = "SLUG_STORE_PASSWORD"
ENV_KEY_FILE = "SLUG_STORE_KEY_FILE"
ENV_DATA_FILE = "SLUG_STORE_DATA_FILE"
ENV_SYNC_URL = "SLUG_STORE_SYNC_URL"
ENV_S3_BUCKET = "SLUG_STORE_S3_BUCKET"
ENV_S3_PREFIX = "SLUG_STORE_S3_PREFIX"
ENV_SYNC_INTERVAL = "SLUG_STORE_SYNC_INTERVAL"
ENV_URL_PARAM = "SLUG_STORE_URL_PARAM"
ENV_AUTO_CONFIG = "SLUG_STORE_AUTO_CONFIG"
ENV_CONFLICT_STRATEGY = "SLUG_STORE_CONFLICT_STRATEGY"

_FIELD_BY_ENV = {
    ENV_PASSWORD: "password",
    ENV_KEY_FILE: "key_file",
    ENV_DATA_FILE: "data_file",
    ENV_SYNC_URL: "sync_url",
    ENV_S3_BUCKET: "s3_bucket",
    ENV_S3_PREFIX: "s3_prefix",
    ENV_SYNC_INTERVAL: "sync_interval",
    ENV_URL_PARAM: "url_param",
    ENV_AUTO_CONFIG: "auto_config",
    ENV_CONFLICT_STRATEGY: "conflict_strategy",
}


def _getenv(name: str) -> Optional[str]:
    v = os.environ.get(name)
    return v if v not in (None, "") else None


class Settings(BaseModel):
    """
    Runtime configuration for a `SlugStore`.

    Fields
    - password: encrypt with a key derived from this password. When unset, a
      generated key is used (persisted to `key_file` when that is set).
    - key_file: where the generated key lives between runs. Without it the key
      only lasts for the process and earlier encrypted tokens become unreadable
      after a restart.
    - data_file: JSON file backing the local offline record store.
    - sync_url / s3_bucket + s3_prefix: remote transport; at most one is used,
      HTTP first. Neither set means offline-only.
    - sync_interval: seconds between background sync passes (<= 0 disables).
    - url_param: query parameter that carries the token in shareable URLs.
    - auto_config: "off", "advisory" or "binding".
    - conflict_strategy: "merge", "client-wins", "server-wins" or "timestamp".
    """

    password: Optional[str] = None
    key_file: Optional[str] = None
    data_file: str = ".slug-store/records.json"
    sync_url: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_prefix: str = "slug-store/"
    sync_interval: float = Field(default=30.0)
    url_param: str = Field(default="s", min_length=1)
    auto_config: str = Field(default="binding", pattern=r"^(off|advisory|binding)$")
    conflict_strategy: str = Field(
        default="merge", pattern=r"^(merge|client-wins|server-wins|timestamp)$"
    )

    @classmethod
    def from_env(cls) -> "Settings":
        raw: Dict[str, str] = {}
        for env_name, field in _FIELD_BY_ENV.items():
            val = _getenv(env_name)
            if val is not None:
                raw[field] = val
        try:
            return cls.model_validate(raw)
        except ValidationError as ex:
            bad = sorted(
                env for env, field in _FIELD_BY_ENV.items()
                if any(err.get("loc", ())[:1] == (field,) for err in ex.errors())
            )
            raise RuntimeError(
                f"Invalid slug-store configuration in environment: {', '.join(bad)}"
            ) from ex


__all__ = ["Settings"]
