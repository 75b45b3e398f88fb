from __future__ import annotations

import logging
from typing import Any, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from codec.compression import CompressionAlgorithm
from common import canonical
from common.errors import EncodeError


logger = logging.getLogger(__name__)

# Matched case-insensitively as substrings of object keys and string values
SENSITIVE_TOKENS: Tuple[str, ...] = (
    "password",
    "passwd",
    "token",
    "secret",
    "key",
    "auth",
    "credential",
    "private",
    "ssn",
    "social",
    "credit",
    "card",
    "cvv",
)


class Thresholds(BaseModel):
    """Size limits, in serialized characters, used by `analyze`."""

    model_config = ConfigDict(frozen=True)

    compress_min: int = Field(default=500, ge=0, description="Compress above this size")
    strong_min: int = Field(default=5000, ge=0, description="Use strong compression above this size")
    url_max: int = Field(default=2000, ge=0, description="Largest payload placed in a URL")
    offline_min: int = Field(default=1000, ge=0, description="Persist offline above this size")


DEFAULT_THRESHOLDS = Thresholds()


class Plan(BaseModel):
    """
    Recommended persistence settings for one value.

    A Plan is a default, not a mandate: `autoconfig.options.compose` decides
    how it combines with settings the caller gave explicitly.
    """

    model_config = ConfigDict(frozen=True)

    should_compress: bool
    should_encrypt: bool
    compression_algorithm: CompressionAlgorithm
    persist_in_url: bool
    persist_offline: bool
    reasoning: List[str] = Field(default_factory=list)
    size: int = 0
    sensitive_matches: Tuple[str, ...] = ()


def _walk_strings(value: Any) -> Iterator[str]:
    stack = [value]
    while stack:
        item = stack.pop()
        if isinstance(item, dict):
            for k, v in item.items():
                yield str(k)
                stack.append(v)
        elif isinstance(item, (list, tuple)):
            stack.extend(item)
        elif isinstance(item, str):
            yield item


def find_sensitive(value: Any) -> Tuple[str, ...]:
    """Denylist tokens present in any key or string value, sorted."""
    found = set()
    for text in _walk_strings(canonical.to_jsonable(value)):
        lowered = text.lower()
        for tok in SENSITIVE_TOKENS:
            if tok in lowered:
                found.add(tok)
    return tuple(sorted(found))


def analyze(value: Any, thresholds: Optional[Thresholds] = None) -> Plan:
    """
    Inspect `value` and recommend compression, encryption and placement.

    Rules, applied in this order (each one adds a line to `reasoning`):
    - size above `compress_min` enables compression; above `strong_min` the
      strong algorithm is chosen, otherwise the fast one
    - any sensitive key or string value enables encryption
    - URL placement only for small, non-sensitive data
    - offline persistence for large or sensitive data, or anything that
      cannot go in a URL

    Pure: the same value always yields an equal Plan.
    Raises EncodeError when the value cannot be serialized at all.
    """
    t = thresholds or DEFAULT_THRESHOLDS
    try:
        size = len(canonical.dumps(value))
    except (TypeError, ValueError, RecursionError) as ex:
        raise EncodeError(f"Value is not JSON-serializable: {ex}") from ex

    reasoning: List[str] = []

    should_compress = size > t.compress_min
    if should_compress:
        reasoning.append(f"Large data detected ({size} chars > {t.compress_min}) - enabling compression")
    else:
        reasoning.append(f"Small data ({size} chars <= {t.compress_min}) - compression not needed")

    if not should_compress:
        algorithm = CompressionAlgorithm.NONE
    elif size > t.strong_min:
        algorithm = CompressionAlgorithm.STRONG
        reasoning.append(f"Very large data ({size} chars > {t.strong_min}) - using strong compression")
    else:
        algorithm = CompressionAlgorithm.FAST
        reasoning.append("Moderate data size - using fast compression")

    matches = find_sensitive(value)
    should_encrypt = bool(matches)
    if should_encrypt:
        reasoning.append(
            f"Sensitive fields detected ({', '.join(matches)}) - enabling encryption"
        )
    else:
        reasoning.append("No sensitive fields detected - encryption not required")

    persist_in_url = not should_encrypt and size <= t.url_max
    if persist_in_url:
        reasoning.append("Shareable, non-sensitive data under URL limits - enabling URL persistence")
    elif should_encrypt:
        reasoning.append("Sensitive data must not be placed in a shareable URL - disabling URL persistence")
    else:
        reasoning.append(f"Data exceeds URL budget ({size} chars > {t.url_max}) - disabling URL persistence")

    persist_offline = size > t.offline_min or should_encrypt or not persist_in_url
    if persist_offline:
        reasoning.append("Large, sensitive or non-shareable data - enabling offline persistence")
    else:
        reasoning.append("Data fits in the URL - offline persistence not needed")

    return Plan(
        should_compress=should_compress,
        should_encrypt=should_encrypt,
        compression_algorithm=algorithm,
        persist_in_url=persist_in_url,
        persist_offline=persist_offline,
        reasoning=reasoning,
        size=size,
        sensitive_matches=matches,
    )


def explain(value: Any, thresholds: Optional[Thresholds] = None) -> str:
    """Multi-line, human-readable summary of `analyze(value)`; also logged at debug."""
    plan = analyze(value, thresholds)

    def _onoff(flag: bool) -> str:
        return "enabled" if flag else "disabled"

    lines = [
        "Auto-config analysis",
        f"  size:        {plan.size} characters",
        f"  compression: {_onoff(plan.should_compress)} ({plan.compression_algorithm.value})",
        f"  encryption:  {_onoff(plan.should_encrypt)}",
        f"  url:         {_onoff(plan.persist_in_url)}",
        f"  offline:     {_onoff(plan.persist_offline)}",
        "  reasoning:",
    ]
    lines.extend(f"    - {r}" for r in plan.reasoning)
    text = "\n".join(lines)
    logger.debug("%s", text)
    return text


__all__ = [
    "SENSITIVE_TOKENS",
    "Thresholds",
    "DEFAULT_THRESHOLDS",
    "Plan",
    "analyze",
    "explain",
    "find_sensitive",
]
