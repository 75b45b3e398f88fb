"""
Auto-config policy engine.

`analyze` inspects a value and returns a Plan (compression, encryption,
placement) with the reasoning behind each decision; `compose` combines a Plan
with explicit caller settings, explicit settings always winning.
"""

from .analyzer import DEFAULT_THRESHOLDS, Plan, Thresholds, analyze, explain, find_sensitive
from .options import AutoConfigMode, PersistenceOptions, ResolvedOptions, compose

__all__ = [
    "Plan",
    "Thresholds",
    "DEFAULT_THRESHOLDS",
    "analyze",
    "explain",
    "find_sensitive",
    "AutoConfigMode",
    "PersistenceOptions",
    "ResolvedOptions",
    "compose",
]
