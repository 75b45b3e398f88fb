from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel


def to_jsonable(value: Any) -> Any:
    """Unwrap pydantic models into plain JSON data; other values pass through."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def dumps(value: Any) -> str:
    """
    Canonical JSON text for `value`.

    Stable key order and no extra whitespace, so equal values always produce
    equal bytes. NaN/Infinity are rejected because they are not JSON.
    Raises TypeError/ValueError exactly like `json.dumps`.
    """
    return json.dumps(
        to_jsonable(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def dump_bytes(value: Any) -> bytes:
    return dumps(value).encode("utf-8")


def load_bytes(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"))


def same_value(a: Any, b: Any) -> bool:
    """Structural equality by canonical form (dict key order ignored)."""
    try:
        return dumps(a) == dumps(b)
    except (TypeError, ValueError):
        return a == b
