"""Shared build cache.

This module handles:
- Per-fingerprint build locks
- Committed cache entries and their metadata
- Crash-safe publication of build outputs
"""

from cargo_local_install.cache.lock import BuildLock
from cargo_local_install.cache.store import CacheEntry, CacheStore

__all__ = ["BuildLock", "CacheEntry", "CacheStore"]
