from __future__ import annotations

import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from codec.codec import StateCodec
from codec.compression import CompressionAlgorithm
from common.canonical import same_value
from common.errors import (
    ConflictUnresolvedError,
    DecodeError,
    MigrationError,
    RemoteConflictError,
    SyncError,
)
from state.models import SyncRecord, SyncState, utcnow
from state.stores import RecordStore

from .conflict import ConflictSide, ConflictStrategy, Strategy, resolve
from .status import StatusChannel, StatusListener, SyncStatus
from .transport import RemoteSnapshot, RemoteTransport


logger = logging.getLogger(__name__)


class SyncOutcome(str, Enum):
    NOOP = "noop"
    PUSHED = "pushed"
    PULLED = "pulled"
    RESOLVED = "resolved"
    CONFLICT = "conflict"
    FAILED = "failed"


class OfflineSyncEngine:
    """
    Local-first persistence with background reconciliation against a remote.

    Per-key state machine
    - clean --local write--> dirty --sync--> syncing --ack--> clean
    - syncing --remote changed meanwhile--> conflict --resolve--> clean | dirty

    Notes
    - `set_state` encodes through the codec and writes the local store only;
      it never waits on the network.
    - Writes and sync bookkeeping for one key are serialized by a per-key
      lock. The lock is released while talking to the remote; a local write
      that lands during that window bumps the record version, so the sync
      leaves the record dirty and the next pass pushes it.
    - Transport failures never raise out of `sync`: they are recorded in the
      status (`online=False`, `last_error`) and retried on the next tick.
      A record that cannot be decoded fails only its own key and leaves
      `online` untouched.
    - A custom conflict resolver that raises propagates
      ConflictUnresolvedError; the record stays in conflict.
    """

    def __init__(
        self,
        *,
        codec: StateCodec,
        store: RecordStore,
        transport: Optional[RemoteTransport] = None,
        strategy: Strategy = ConflictStrategy.MERGE,
        sync_interval: Optional[float] = None,
        compress: bool = False,
        encrypt: bool = False,
        algorithm: Optional[CompressionAlgorithm] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if isinstance(strategy, str):
            strategy = ConflictStrategy(strategy)
        self._codec = codec
        self._store = store
        self._transport = transport
        self._strategy = strategy
        self._sync_interval = sync_interval
        self._compress = compress
        self._encrypt = encrypt
        self._algorithm = algorithm
        self._clock = clock

        self._meta_lock = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}
        self._syncing: Set[str] = set()
        self._online = transport is not None
        self._last_sync: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_status: Optional[SyncStatus] = None
        self._channel = StatusChannel()

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -------- Local state --------
    def set_state(
        self,
        key: str,
        value: Any,
        *,
        compress: Optional[bool] = None,
        encrypt: Optional[bool] = None,
        algorithm: Optional[CompressionAlgorithm] = None,
    ) -> SyncRecord:
        """Encode `value` and store it locally as a dirty record."""
        token = self._codec.encode(
            value,
            compress=self._compress if compress is None else compress,
            encrypt=self._encrypt if encrypt is None else encrypt,
            algorithm=algorithm or self._algorithm,
        )
        with self._key_lock(key):
            existing = self._store.get(key)
            now = self._clock()
            if existing is None:
                record = SyncRecord(
                    key=key, token=token, version=1, updated_at=now, dirty=True, status=SyncState.DIRTY
                )
            else:
                record = existing.model_copy(
                    update={
                        "token": token,
                        "version": existing.version + 1,
                        "updated_at": now,
                        "dirty": True,
                        "status": SyncState.CONFLICT if existing.in_conflict else SyncState.DIRTY,
                    }
                )
            self._store.put(record)
        logger.debug("set_state %s -> local v%d", key, record.version)
        self._publish()
        return record

    def get_state(self, key: str, default: Any = None) -> Any:
        """Decoded local value, or `default` when there is no record."""
        record = self._store.get(key)
        if record is None:
            return default
        return self._codec.decode(record.token)

    def get_record(self, key: str) -> Optional[SyncRecord]:
        return self._store.get(key)

    def clear(self, key: str) -> None:
        """Forget the local record for `key` (the remote copy is untouched)."""
        with self._key_lock(key):
            self._store.delete(key)
        self._publish()

    def reset(self) -> None:
        for key in self._store.keys():
            with self._key_lock(key):
                self._store.delete(key)
        self._publish()

    def pending_keys(self) -> List[str]:
        out = []
        for key in self._store.keys():
            record = self._store.get(key)
            if record is not None and (record.dirty or record.in_conflict):
                out.append(key)
        return out

    # -------- Sync --------
    def sync(self, key: str) -> SyncOutcome:
        """
        Reconcile one key with the remote.

        Dirty records are pushed; clean ones are refreshed from the remote when
        it has moved on. Concurrent remote changes to a dirty record go through
        the conflict strategy.
        """
        if self._transport is None:
            return SyncOutcome.NOOP
        with self._meta_lock:
            if key in self._syncing:
                return SyncOutcome.NOOP
            self._syncing.add(key)
        try:
            return self._sync_key(key)
        finally:
            with self._meta_lock:
                self._syncing.discard(key)
            self._publish()

    def sync_all(self) -> Dict[str, SyncOutcome]:
        """One pass over every dirty or conflicted key."""
        results: Dict[str, SyncOutcome] = {}
        for key in self.pending_keys():
            if self._stop.is_set() and threading.current_thread() is self._thread:
                break
            try:
                results[key] = self.sync(key)
            except ConflictUnresolvedError as ex:
                logger.warning("%s", ex)
                with self._meta_lock:
                    self._last_error = str(ex)
                results[key] = SyncOutcome.CONFLICT
        return results

    def resolve_conflict(self, key: str, strategy: Optional[Strategy] = None) -> SyncOutcome:
        """Resolve a record left in conflict, optionally with a different strategy."""
        try:
            return self._resolve(key, strategy)
        finally:
            self._publish()

    def _sync_key(self, key: str) -> SyncOutcome:
        snap = self._begin(key)
        if snap is None:
            return SyncOutcome.NOOP
        try:
            if snap.in_conflict:
                outcome = self._resolve(key, None)
            else:
                outcome = self._exchange(key, snap)
            if outcome is SyncOutcome.RESOLVED:
                # Push the reconciled value in the same pass when it differs from the remote
                follow = self._begin(key)
                if follow is not None and follow.dirty and not follow.in_conflict:
                    self._exchange(key, follow)
            return outcome
        except SyncError as ex:
            self._on_failure(key, ex)
            return SyncOutcome.FAILED
        except Exception:
            self._restore_status(key)
            raise

    def _begin(self, key: str) -> Optional[SyncRecord]:
        with self._key_lock(key):
            record = self._store.get(key)
            if record is None:
                return None
            if record.dirty and record.status is SyncState.DIRTY:
                record = record.model_copy(update={"status": SyncState.SYNCING})
                self._store.put(record)
        self._publish()
        return record

    def _exchange(self, key: str, snap: SyncRecord) -> SyncOutcome:
        transport = self._transport
        if transport is None:
            return SyncOutcome.NOOP
        remote = transport.pull(key)
        self._mark_online()

        if remote is not None and remote.version != snap.remote_version:
            remote_value = self._decode_remote(key, remote)
            if same_value(self._decode_local(key, snap.token), remote_value):
                return self._settle(key, snap, remote.version, SyncOutcome.PULLED)
            if not snap.dirty:
                return self._adopt(key, snap, remote)
            return self._enter_conflict(key, remote)

        if not snap.dirty:
            return SyncOutcome.NOOP

        expected = remote.version if remote is not None else None
        try:
            ack = transport.push(key, snap.token, expected_version=expected)
        except RemoteConflictError:
            logger.info("push of %s rejected, remote changed concurrently", key)
            remote = transport.pull(key)
            if remote is None:
                raise SyncError(f"remote copy of {key!r} changed during push and then disappeared")
            self._decode_remote(key, remote)
            return self._enter_conflict(key, remote)
        logger.info("pushed %s (local v%d -> remote %s)", key, snap.version, ack.version)
        return self._settle(key, snap, ack.version, SyncOutcome.PUSHED)

    def _settle(self, key: str, snap: SyncRecord, remote_version: str, outcome: SyncOutcome) -> SyncOutcome:
        with self._key_lock(key):
            current = self._store.get(key)
            if current is not None:
                if current.version != snap.version:
                    # Written during flight: stays dirty for the next pass
                    update: Dict[str, Any] = {"remote_version": remote_version}
                    if current.status is SyncState.SYNCING:
                        update["status"] = SyncState.DIRTY
                    self._store.put(current.model_copy(update=update))
                else:
                    self._store.put(
                        current.model_copy(
                            update={"dirty": False, "status": SyncState.CLEAN, "remote_version": remote_version}
                        )
                    )
        self._mark_synced()
        return outcome

    def _adopt(self, key: str, snap: SyncRecord, remote: RemoteSnapshot) -> SyncOutcome:
        with self._key_lock(key):
            current = self._store.get(key)
            if current is None or current.version != snap.version or current.dirty:
                # A local write raced the pull; the next pass reconciles it
                return SyncOutcome.NOOP
            self._store.put(
                current.model_copy(
                    update={
                        "token": remote.token,
                        "version": current.version + 1,
                        "updated_at": remote.updated_at,
                        "remote_version": remote.version,
                        "dirty": False,
                        "status": SyncState.CLEAN,
                    }
                )
            )
        logger.info("refreshed %s from remote %s", key, remote.version)
        self._mark_synced()
        return SyncOutcome.PULLED

    def _enter_conflict(self, key: str, remote: RemoteSnapshot) -> SyncOutcome:
        with self._key_lock(key):
            current = self._store.get(key)
            if current is None:
                return SyncOutcome.NOOP
            self._store.put(
                current.model_copy(
                    update={
                        "status": SyncState.CONFLICT,
                        "conflict_token": remote.token,
                        "conflict_version": remote.version,
                        "conflict_updated_at": remote.updated_at,
                    }
                )
            )
        logger.warning("conflict on %s: local v%d vs remote %s", key, current.version, remote.version)
        self._publish()
        return self._resolve(key, None)

    def _resolve(self, key: str, strategy: Optional[Strategy]) -> SyncOutcome:
        chosen = self._strategy if strategy is None else strategy
        if isinstance(chosen, str):
            chosen = ConflictStrategy(chosen)
        with self._key_lock(key):
            record = self._store.get(key)
            if record is None or not record.in_conflict or record.conflict_token is None:
                return SyncOutcome.NOOP
            local_value = self._decode_local(key, record.token)
            remote_value = self._decode_local(key, record.conflict_token)
            remote_at = record.conflict_updated_at or record.updated_at
            try:
                res = resolve(
                    ConflictSide(value=local_value, updated_at=record.updated_at),
                    ConflictSide(value=remote_value, updated_at=remote_at),
                    chosen,
                )
            except ConflictUnresolvedError as ex:
                raise ConflictUnresolvedError(str(ex), key=key) from ex

            update: Dict[str, Any] = {
                "version": record.version + 1,
                "updated_at": res.updated_at,
                "remote_version": record.conflict_version,
                "conflict_token": None,
                "conflict_version": None,
                "conflict_updated_at": None,
            }
            if same_value(res.value, remote_value):
                update.update(token=record.conflict_token, dirty=False, status=SyncState.CLEAN)
            else:
                token = record.token if same_value(res.value, local_value) else self._reencode(res.value, record.token)
                update.update(token=token, dirty=True, status=SyncState.DIRTY)
            self._store.put(record.model_copy(update=update))
        name = chosen.value if isinstance(chosen, ConflictStrategy) else "custom"
        logger.info("resolved conflict on %s with %s strategy (%s)", key, name, res.winner)
        return SyncOutcome.RESOLVED

    def _reencode(self, value: Any, like_token: str) -> str:
        # Keep the at-rest protection the local value already had
        info = self._codec.inspect(like_token)
        return self._codec.encode(
            value,
            compress=info.compressed or self._compress,
            encrypt=info.encrypted or self._encrypt,
            algorithm=self._algorithm,
        )

    def _decode_local(self, key: str, token: str) -> Any:
        try:
            return self._codec.decode(token)
        except (DecodeError, MigrationError) as ex:
            raise SyncError(f"local value for {key!r} could not be decoded: {ex}") from ex

    def _decode_remote(self, key: str, remote: RemoteSnapshot) -> Any:
        try:
            return self._codec.decode(remote.token)
        except (DecodeError, MigrationError) as ex:
            raise SyncError(f"remote value for {key!r} could not be decoded: {ex}") from ex

    def _restore_status(self, key: str) -> None:
        with self._key_lock(key):
            current = self._store.get(key)
            if current is not None and current.status is SyncState.SYNCING:
                self._store.put(current.model_copy(update={"status": SyncState.DIRTY}))

    def _on_failure(self, key: str, ex: SyncError) -> None:
        self._restore_status(key)
        undecodable = isinstance(ex.__cause__, (DecodeError, MigrationError))
        with self._meta_lock:
            if not undecodable:
                self._online = False
            self._last_error = str(ex)
        logger.warning("sync of %s failed, will retry on next pass: %s", key, ex)

    def _mark_online(self) -> None:
        with self._meta_lock:
            came_back = not self._online
            self._online = True
        if came_back:
            logger.info("remote reachable again")

    def _mark_synced(self) -> None:
        with self._meta_lock:
            self._last_sync = self._clock()
            self._last_error = None

    # -------- Status --------
    @property
    def status(self) -> SyncStatus:
        return self._compute_status()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Call `listener` with every status change; returns an unsubscribe function."""
        return self._channel.subscribe(listener)

    def _compute_status(self) -> SyncStatus:
        pending = 0
        conflicts = False
        for key in self._store.keys():
            record = self._store.get(key)
            if record is None:
                continue
            if record.dirty:
                pending += 1
            if record.in_conflict:
                conflicts = True
        with self._meta_lock:
            return SyncStatus(
                online=self._online,
                syncing=bool(self._syncing),
                pending_changes=pending,
                last_sync=self._last_sync,
                conflicts=conflicts,
                last_error=self._last_error,
            )

    def _publish(self) -> None:
        status = self._compute_status()
        with self._meta_lock:
            if status == self._last_status:
                return
            self._last_status = status
        self._channel.publish(status)

    # -------- Background sync --------
    def start(self) -> None:
        """Run `sync_all` every `sync_interval` seconds on a daemon thread."""
        if self._transport is None:
            raise RuntimeError("background sync needs a remote transport")
        if not self._sync_interval or self._sync_interval <= 0:
            raise ValueError("sync_interval must be > 0 for background sync")
        with self._meta_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="slug-store-sync", daemon=True)
            self._thread.start()

    def _run(self) -> None:
        logger.info("background sync started (every %.1fs)", self._sync_interval)
        while not self._stop.wait(self._sync_interval):
            try:
                self.sync_all()
            except Exception:
                # Keep the worker alive; the failing key is retried next tick
                logger.exception("background sync pass failed")
        logger.info("background sync stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def close(self, *, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop background sync.

        An in-flight sync is allowed to finish when `wait` is true. Dirty
        records stay in the local store either way.
        """
        self._stop.set()
        thread = self._thread
        if thread is not None and wait and thread is not threading.current_thread():
            thread.join(timeout)

    def __enter__(self) -> "OfflineSyncEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _key_lock(self, key: str) -> threading.Lock:
        with self._meta_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock


__all__ = ["OfflineSyncEngine", "SyncOutcome"]
