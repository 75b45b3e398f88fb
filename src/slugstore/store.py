from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from autoconfig.analyzer import Plan, Thresholds, analyze, explain
from autoconfig.options import AutoConfigMode, PersistenceOptions, ResolvedOptions, compose
from codec.codec import StateCodec
from codec.encryption import GeneratedKeyProvider, KeyProvider, PasswordKeyProvider
from codec.url import DEFAULT_PARAM, build_url, token_from_url
from common.config import Settings
from common.errors import DecodeError, MigrationError
from state.stores import JsonFileRecordStore, MemoryRecordStore
from sync.engine import OfflineSyncEngine, SyncOutcome
from sync.http_transport import HttpTransport
from sync.s3_transport import S3Transport
from sync.status import StatusListener, SyncStatus
from sync.transport import RemoteTransport


logger = logging.getLogger(__name__)

_SYNCED = (SyncOutcome.PUSHED, SyncOutcome.PULLED, SyncOutcome.RESOLVED, SyncOutcome.NOOP)


@dataclass(frozen=True)
class SaveResult:
    token: str
    url: Optional[str]
    offline: bool
    synced_remote: bool
    plan: Optional[Plan]
    reasoning: List[str] = field(default_factory=list)


class SlugStore:
    """
    One object for the whole pipeline: auto-config, codec, URL placement and
    offline sync.

    Usage
    - `save(key, value)` analyzes the value (unless auto-config is off),
      merges the Plan with any explicit PersistenceOptions, encodes, and
      places the token in a URL and/or the offline store.
    - `load(key, url=...)` prefers the URL token, then the offline record,
      then `default`. Undecodable state is logged and skipped.
    - Remote pushes happen in `sync()` or in the engine's background thread.
    """

    def __init__(
        self,
        *,
        codec: Optional[StateCodec] = None,
        engine: Optional[OfflineSyncEngine] = None,
        mode: AutoConfigMode | str = AutoConfigMode.BINDING,
        thresholds: Optional[Thresholds] = None,
        url_param: str = DEFAULT_PARAM,
    ) -> None:
        self._codec = codec or StateCodec(key_provider=GeneratedKeyProvider())
        self._engine = engine or OfflineSyncEngine(codec=self._codec, store=MemoryRecordStore())
        self._mode = AutoConfigMode(mode)
        self._thresholds = thresholds
        self._url_param = url_param
        self._closers: List[Callable[[], None]] = []

    @classmethod
    def from_env(cls, settings: Optional[Settings] = None) -> "SlugStore":
        """
        Build a store from SLUG_STORE_* environment variables.

        Starts background sync when a remote is configured and
        `sync_interval` is positive.
        """
        s = settings or Settings.from_env()
        keys: KeyProvider = (
            PasswordKeyProvider(s.password) if s.password else GeneratedKeyProvider(s.key_file)
        )
        codec = StateCodec(key_provider=keys)

        transport: Optional[RemoteTransport] = None
        if s.sync_url:
            transport = HttpTransport(s.sync_url)
        elif s.s3_bucket:
            transport = S3Transport(bucket=s.s3_bucket, prefix=s.s3_prefix)

        interval = s.sync_interval if transport is not None and s.sync_interval > 0 else None
        engine = OfflineSyncEngine(
            codec=codec,
            store=JsonFileRecordStore(s.data_file),
            transport=transport,
            strategy=s.conflict_strategy,
            sync_interval=interval,
        )
        inst = cls(codec=codec, engine=engine, mode=s.auto_config, url_param=s.url_param)
        if isinstance(transport, HttpTransport):
            inst._closers.append(transport.close)
        if interval is not None:
            engine.start()
        logger.info(
            "slug-store ready (remote=%s, auto_config=%s, data_file=%s)",
            type(transport).__name__ if transport else "none",
            s.auto_config,
            s.data_file,
        )
        return inst

    @property
    def codec(self) -> StateCodec:
        return self._codec

    @property
    def engine(self) -> OfflineSyncEngine:
        return self._engine

    # -------- Policy --------
    def plan_for(self, value: Any, options: Optional[PersistenceOptions] = None) -> ResolvedOptions:
        """Settings `save` would use for `value`."""
        plan = None if self._mode is AutoConfigMode.OFF else analyze(value, self._thresholds)
        resolved = compose(options, plan, self._mode)
        if self._mode is AutoConfigMode.ADVISORY and plan is not None:
            logger.info(
                "auto-config advisory: compress=%s encrypt=%s url=%s offline=%s",
                plan.should_compress,
                plan.should_encrypt,
                plan.persist_in_url,
                plan.persist_offline,
            )
        return resolved

    def explain(self, value: Any) -> str:
        return explain(value, self._thresholds)

    # -------- Save / load --------
    def save(
        self,
        key: str,
        value: Any,
        options: Optional[PersistenceOptions] = None,
        *,
        base_url: Optional[str] = None,
        push: bool = False,
    ) -> SaveResult:
        """
        Persist `value` under `key`.

        `url` in the result is only set when URL placement is on and a
        `base_url` is given. With `push=True` an offline write is synced
        right away instead of waiting for the next background pass.
        """
        resolved = self.plan_for(value, options)
        token = self._codec.encode(
            value,
            compress=resolved.compress,
            encrypt=resolved.encrypt,
            algorithm=resolved.algorithm,
        )

        url = None
        if resolved.url and base_url:
            url = build_url(base_url, token, param=self._url_param)

        synced = False
        if resolved.offline:
            self._engine.set_state(
                key,
                value,
                compress=resolved.compress,
                encrypt=resolved.encrypt,
                algorithm=resolved.algorithm,
            )
            if push:
                synced = self._engine.sync(key) in _SYNCED and self._engine.status.online

        logger.debug("saved %s (url=%s offline=%s): %s", key, url is not None, resolved.offline,
                     "; ".join(resolved.reasoning))
        return SaveResult(
            token=token,
            url=url,
            offline=resolved.offline,
            synced_remote=synced,
            plan=resolved.plan,
            reasoning=list(resolved.reasoning),
        )

    def load(self, key: str, default: Any = None, *, url: Optional[str] = None) -> Any:
        """URL state first, then the offline record, then `default`."""
        if url:
            token = token_from_url(url, param=self._url_param)
            if token:
                try:
                    return self._codec.decode(token)
                except (DecodeError, MigrationError) as ex:
                    logger.warning("ignoring undecodable URL state for %s: %s", key, ex)
        try:
            return self._engine.get_state(key, default)
        except (DecodeError, MigrationError) as ex:
            logger.warning("ignoring undecodable offline state for %s: %s", key, ex)
            return default

    def share_url(self, key: str, base_url: str) -> Optional[str]:
        """Shareable URL for the current local value of `key`, or None when there is none."""
        if self._engine.get_record(key) is None:
            return None
        value = self._engine.get_state(key)
        resolved = self.plan_for(value, PersistenceOptions(url=True))
        token = self._codec.encode(
            value,
            compress=resolved.compress,
            encrypt=resolved.encrypt,
            algorithm=resolved.algorithm,
        )
        return build_url(base_url, token, param=self._url_param)

    def delete(self, key: str) -> None:
        self._engine.clear(key)

    # -------- Sync --------
    def sync(self, key: Optional[str] = None):
        """Sync one key, or every pending key when `key` is None."""
        if key is None:
            return self._engine.sync_all()
        return self._engine.sync(key)

    @property
    def status(self) -> SyncStatus:
        return self._engine.status

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        return self._engine.subscribe(listener)

    def close(self) -> None:
        self._engine.close()
        for closer in self._closers:
            closer()
        self._closers.clear()

    def __enter__(self) -> "SlugStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["SlugStore", "SaveResult"]
