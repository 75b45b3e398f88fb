from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from codec.compression import CompressionAlgorithm

from .analyzer import Plan


class AutoConfigMode(str, Enum):
    """
    How an auto-config Plan combines with caller settings.

    - off: no analysis; unset settings take library defaults.
    - advisory: the Plan is computed and reported, but never changes a setting.
    - binding: the Plan fills every setting the caller left unset.

    In every mode a setting the caller gave explicitly is used as-is.
    """

    OFF = "off"
    ADVISORY = "advisory"
    BINDING = "binding"


@dataclass(frozen=True)
class PersistenceOptions:
    """Caller settings; None means "not specified"."""

    url: Optional[bool] = None
    offline: Optional[bool] = None
    compress: Optional[bool] = None
    encrypt: Optional[bool] = None
    algorithm: Optional[CompressionAlgorithm] = None


DEFAULTS = PersistenceOptions(
    url=True,
    offline=False,
    compress=False,
    encrypt=False,
    algorithm=CompressionAlgorithm.FAST,
)


@dataclass(frozen=True)
class ResolvedOptions:
    url: bool
    offline: bool
    compress: bool
    encrypt: bool
    algorithm: CompressionAlgorithm
    mode: AutoConfigMode
    plan: Optional[Plan] = None
    reasoning: List[str] = field(default_factory=list)


def compose(
    explicit: Optional[PersistenceOptions],
    plan: Optional[Plan],
    mode: AutoConfigMode | str = AutoConfigMode.BINDING,
) -> ResolvedOptions:
    """
    Merge explicit settings with an auto-config Plan.

    Precedence per setting: explicit value, then the Plan (binding mode only),
    then DEFAULTS. So an explicit `offline=True` persists offline even when the
    Plan says otherwise, and an explicit `encrypt=False` is never overridden by
    sensitive-field detection.
    """
    m = AutoConfigMode(mode)
    ex = explicit or PersistenceOptions()
    use_plan = plan is not None and m is AutoConfigMode.BINDING
    reasoning: List[str] = list(plan.reasoning) if plan is not None else []

    def pick(name: str, explicit_value, plan_value):
        if explicit_value is not None:
            if use_plan and plan_value != explicit_value:
                reasoning.append(f"Explicit {name}={explicit_value} overrides auto-config ({plan_value})")
            return explicit_value
        if use_plan:
            return plan_value
        return getattr(DEFAULTS, name)

    url = pick("url", ex.url, plan.persist_in_url if plan else None)
    offline = pick("offline", ex.offline, plan.persist_offline if plan else None)
    compress = pick("compress", ex.compress, plan.should_compress if plan else None)
    encrypt = pick("encrypt", ex.encrypt, plan.should_encrypt if plan else None)

    if ex.algorithm is not None:
        algorithm = CompressionAlgorithm(ex.algorithm)
    elif use_plan and plan.compression_algorithm is not CompressionAlgorithm.NONE:
        algorithm = plan.compression_algorithm
    else:
        algorithm = DEFAULTS.algorithm

    return ResolvedOptions(
        url=bool(url),
        offline=bool(offline),
        compress=bool(compress),
        encrypt=bool(encrypt),
        algorithm=algorithm,
        mode=m,
        plan=plan,
        reasoning=reasoning,
    )


__all__ = [
    "AutoConfigMode",
    "PersistenceOptions",
    "ResolvedOptions",
    "DEFAULTS",
    "compose",
]
