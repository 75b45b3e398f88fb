"""
slug-store: compact, URL-safe state tokens with auto-configured compression,
encryption and offline-first sync.

The `SlugStore` facade wires the `codec`, `autoconfig` and `sync` packages
together; each of them can also be used on its own.
"""

from .store import SaveResult, SlugStore

__all__ = ["SlugStore", "SaveResult"]
