from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Union

from common import canonical
from common.errors import ConflictUnresolvedError


class ConflictStrategy(str, Enum):
    MERGE = "merge"
    CLIENT_WINS = "client-wins"
    SERVER_WINS = "server-wins"
    TIMESTAMP = "timestamp"


CustomResolver = Callable[[Any, Any], Any]
Strategy = Union[ConflictStrategy, str, CustomResolver]


@dataclass(frozen=True)
class ConflictSide:
    value: Any
    updated_at: datetime


@dataclass(frozen=True)
class Resolution:
    value: Any
    updated_at: datetime
    winner: str  # "local", "remote" or "merged"


def deep_merge(local: Any, remote: Any) -> Any:
    """
    Remote-biased structural merge.

    - dict + dict: union of keys; a key present on both sides is merged
      recursively.
    - list + list: remote items in their order, then local items not already
      present (compared by canonical JSON), without duplicates.
    - anything else (scalars, mismatched shapes): the remote value.

    Deterministic, and idempotent with respect to the remote side:
    deep_merge(deep_merge(l, r), r) == deep_merge(l, r).
    """
    if isinstance(local, dict) and isinstance(remote, dict):
        out: Dict[str, Any] = {}
        for k, rv in remote.items():
            out[k] = deep_merge(local[k], rv) if k in local else rv
        for k, lv in local.items():
            if k not in remote:
                out[k] = lv
        return out
    if isinstance(local, list) and isinstance(remote, list):
        merged: List[Any] = []
        seen = set()
        for item in list(remote) + list(local):
            fp = canonical.dumps(item)
            if fp in seen:
                continue
            seen.add(fp)
            merged.append(item)
        return merged
    return remote


def resolve(local: ConflictSide, remote: ConflictSide, strategy: Strategy = ConflictStrategy.MERGE) -> Resolution:
    """
    Reconcile a locally changed value with a concurrently changed remote one.

    - client-wins: the local value, unconditionally.
    - server-wins: the remote value; local edits are discarded.
    - timestamp: the side with the later `updated_at`; ties go to the remote.
    - merge: `deep_merge(local, remote)`.
    - callable: `strategy(local_value, remote_value)`. If it raises, the
      conflict is left unresolved (ConflictUnresolvedError).

    Pure and deterministic for the built-in strategies.
    """
    if callable(strategy) and not isinstance(strategy, (str, ConflictStrategy)):
        try:
            value = strategy(local.value, remote.value)
        except Exception as ex:
            raise ConflictUnresolvedError(f"custom resolver raised {type(ex).__name__}: {ex}") from ex
        return Resolution(value=value, updated_at=max(local.updated_at, remote.updated_at), winner="merged")

    s = ConflictStrategy(strategy)
    if s is ConflictStrategy.CLIENT_WINS:
        return Resolution(value=local.value, updated_at=local.updated_at, winner="local")
    if s is ConflictStrategy.SERVER_WINS:
        return Resolution(value=remote.value, updated_at=remote.updated_at, winner="remote")
    if s is ConflictStrategy.TIMESTAMP:
        if local.updated_at > remote.updated_at:
            return Resolution(value=local.value, updated_at=local.updated_at, winner="local")
        return Resolution(value=remote.value, updated_at=remote.updated_at, winner="remote")
    return Resolution(
        value=deep_merge(local.value, remote.value),
        updated_at=max(local.updated_at, remote.updated_at),
        winner="merged",
    )


__all__ = [
    "ConflictStrategy",
    "ConflictSide",
    "Resolution",
    "CustomResolver",
    "Strategy",
    "deep_merge",
    "resolve",
]
