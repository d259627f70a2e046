# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Skeleton cache with batch LRU eviction and content-hash validation.

This module implements the memory layer in front of the durable store:
- LRUCache: bounded recency-ordered map of value + fingerprint
- SkeletonCache: validates every read against the file's current content
  hash and coalesces bursts of change events into one invalidation

Design Decisions:
- Fingerprints are SHA-256 over raw bytes, not mtimes. Editors touch mtime
  without changing content, and mtime granularity can hide real edits.
- Eviction removes the oldest 10% (minimum 1) in one pass, so sustained
  insert pressure does not pay an eviction on every set.
- Debounce timers are owned here as a ``path -> threading.Timer`` map; a new
  event for a path cancels its previous timer.

Thread Safety:
- LRUCache: _lock protects _entries and the eviction counter
- SkeletonCache: _lock protects timers and counters; file hashing runs
  outside any lock
- Debounce timers fire on their own threads; completion callbacks run
  outside the lock
"""

import hashlib
import logging
import os
import stat
import threading
from collections import OrderedDict
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from acl_context.models import CacheEntry, CacheStatistics

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ENTRIES = 5000
DEFAULT_DEBOUNCE_MS = 500

# Fraction of capacity removed per eviction pass
EVICTION_FRACTION = 0.1


def compute_fingerprint(filepath: str) -> Optional[str]:
    """Compute the content fingerprint of a file.

    Args:
        filepath: Path to file.

    Returns:
        SHA-256 hex digest of the raw bytes, or None if the path is missing,
        unreadable or not a regular file.
    """
    try:
        if not stat.S_ISREG(os.stat(filepath).st_mode):
            return None
        hasher = hashlib.sha256()
        with open(filepath, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                hasher.update(chunk)
        return hasher.hexdigest()
    except OSError:
        return None


class LRUCache(Generic[T]):
    """Bounded map from key to value + fingerprint, ordered by recency.

    Entries live in an OrderedDict kept in ``accessed_at`` order: every touch
    moves the key to the end, so the front is always least recently used.

    Never raises to callers.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._max_size = max_size
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._evictions = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for ``key`` and mark it most recently used."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.touch()
                self._entries.move_to_end(key)
            return entry

    def set(self, key: str, value: T, fingerprint: str) -> None:
        """Insert or replace ``key``, evicting a batch first when full."""
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self._max_size:
                self._evict_batch()
            self._entries[key] = CacheEntry(value=value, fingerprint=fingerprint)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def capacity(self) -> int:
        return self._max_size

    def keys(self) -> List[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    @property
    def evictions(self) -> int:
        return self._evictions

    def _evict_batch(self) -> None:
        """Evict the oldest 10% (minimum 1) of capacity. Caller holds _lock."""
        count = max(1, int(self._max_size * EVICTION_FRACTION))
        for _ in range(min(count, len(self._entries))):
            key, _entry = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug(f"Evicted cache entry: {key}")


class SkeletonCache(Generic[T]):
    """Fingerprint-validated, debounced cache of per-file values.

    A hit is only returned when the file's current fingerprint equals the
    one recorded at ``set`` time. The check runs on every read.

    Usage:
        cache = SkeletonCache(max_size=5000, debounce_ms=500)
        skeleton = cache.get_if_valid(path)
        if skeleton is None:
            skeleton = parse(path)
            cache.set(path, skeleton)
        cache.invalidate_debounced(path, on_invalidated=drop_store_record)
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_ENTRIES,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ) -> None:
        self._memory: LRUCache[T] = LRUCache(max_size)
        self._debounce_seconds = debounce_ms / 1000.0
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._invalidations = 0

        logger.debug(
            f"SkeletonCache initialized with max_size={max_size}, debounce={debounce_ms}ms"
        )

    @property
    def memory(self) -> LRUCache[T]:
        """Underlying recency-ordered cache."""
        return self._memory

    def get_if_valid(self, filepath: str) -> Optional[T]:
        """Return the cached value if the file content is unchanged.

        A mismatching or unavailable fingerprint evicts the entry.
        """
        entry = self._memory.get(filepath)
        if entry is None:
            with self._lock:
                self._misses += 1
            return None

        current = compute_fingerprint(filepath)
        if current is not None and current == entry.fingerprint:
            with self._lock:
                self._hits += 1
            value: T = entry.value
            return value

        self._memory.delete(filepath)
        with self._lock:
            self._misses += 1
            self._invalidations += 1
        logger.debug(f"Stale cache entry dropped: {filepath}")
        return None

    def set(self, filepath: str, value: T, fingerprint: Optional[str] = None) -> None:
        """Cache ``value`` under the file's current fingerprint.

        Skipped silently when the fingerprint cannot be computed (the file
        vanished between parse and store).
        """
        if fingerprint is None:
            fingerprint = compute_fingerprint(filepath)
        if fingerprint is None:
            logger.debug(f"Cannot cache {filepath}: file not accessible")
            return
        self._memory.set(filepath, value, fingerprint)

    def invalidate_debounced(
        self,
        filepath: str,
        on_invalidated: Optional[Callable[[], None]] = None,
    ) -> None:
        """Schedule removal of ``filepath`` after the quiet period.

        A later call for the same path cancels and restarts the timer, so a
        burst of events produces one invalidation timed from the last event.
        """

        def fire() -> None:
            self._fire(filepath, timer, on_invalidated)

        timer = threading.Timer(self._debounce_seconds, fire)
        timer.daemon = True

        with self._lock:
            existing = self._timers.get(filepath)
            if existing is not None:
                existing.cancel()
            self._timers[filepath] = timer
        timer.start()

    def _fire(
        self,
        filepath: str,
        timer: threading.Timer,
        on_invalidated: Optional[Callable[[], None]],
    ) -> None:
        with self._lock:
            # A superseded timer may still fire if cancel() raced with expiry
            if self._timers.get(filepath) is not timer:
                return
            del self._timers[filepath]
            self._invalidations += 1
        self._memory.delete(filepath)
        logger.debug(f"Debounced invalidation applied: {filepath}")

        if on_invalidated is not None:
            try:
                on_invalidated()
            except Exception as e:
                logger.error(f"Invalidation callback failed for {filepath}: {e}")

    def invalidate(self, filepath: str) -> None:
        """Remove ``filepath`` now and cancel any pending timer for it."""
        with self._lock:
            timer = self._timers.pop(filepath, None)
            if timer is not None:
                timer.cancel()
            self._invalidations += 1
        self._memory.delete(filepath)

    def has_pending(self, filepath: str) -> bool:
        """Whether a debounced invalidation is scheduled for ``filepath``."""
        with self._lock:
            return filepath in self._timers

    def clear(self) -> None:
        """Drop every entry and cancel every pending timer."""
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
        self._memory.clear()

    def stats(self) -> CacheStatistics:
        with self._lock:
            return CacheStatistics(
                size=self._memory.size(),
                max_size=self._memory.capacity(),
                hits=self._hits,
                misses=self._misses,
                invalidations=self._invalidations,
                evictions=self._memory.evictions,
                pending_invalidations=len(self._timers),
            )
