"""
Shared building blocks for slug-store.

Modules:
- errors: exception taxonomy shared by codec, auto-config and sync layers
- canonical: deterministic JSON serialization used for tokens and comparisons
- config: environment-driven settings
"""

__all__ = [
    "errors",
    "canonical",
    "config",
]
