# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Unit tests for LRUCache and SkeletonCache.

Tests coverage:
- Batch eviction of the least recently used entries
- Fingerprint validation on every read
- Debounced invalidation: coalescing, cancellation, callbacks
- Statistics tracking
- Thread safety (concurrent access)
"""

import hashlib
import os
import threading
import time
from pathlib import Path
from typing import List

import pytest

from acl_context.cache import LRUCache, SkeletonCache, compute_fingerprint


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestComputeFingerprint:
    """Tests for content fingerprints."""

    def test_sha256_of_raw_bytes(self, tmp_path: Path) -> None:
        path = tmp_path / "a.ts"
        path.write_bytes(b"export const a = 1;\n")
        assert compute_fingerprint(str(path)) == hashlib.sha256(path.read_bytes()).hexdigest()

    def test_large_file_hashed_in_chunks(self, tmp_path: Path) -> None:
        path = tmp_path / "big.py"
        data = b"x = 1\n" * 10000
        path.write_bytes(data)
        assert compute_fingerprint(str(path)) == hashlib.sha256(data).hexdigest()

    def test_missing_file(self, tmp_path: Path) -> None:
        assert compute_fingerprint(str(tmp_path / "missing.ts")) is None

    def test_directory_is_not_fingerprinted(self, tmp_path: Path) -> None:
        assert compute_fingerprint(str(tmp_path)) is None

    def test_mtime_only_change_keeps_fingerprint(self, tmp_path: Path) -> None:
        path = tmp_path / "a.ts"
        path.write_text("const a = 1;")
        before = compute_fingerprint(str(path))
        os.utime(path, (time.time() + 100, time.time() + 100))
        assert compute_fingerprint(str(path)) == before


class TestLRUCache:
    """Tests for the bounded recency-ordered map."""

    def test_get_set_delete(self) -> None:
        cache: LRUCache[str] = LRUCache(max_size=3)
        cache.set("a", "A", "fa")
        entry = cache.get("a")
        assert entry is not None
        assert entry.value == "A"
        assert entry.fingerprint == "fa"
        assert cache.has("a")
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.get("a") is None

    def test_rejects_non_positive_capacity(self) -> None:
        with pytest.raises(ValueError):
            LRUCache(max_size=0)

    def test_replacing_existing_key_does_not_evict(self) -> None:
        cache: LRUCache[int] = LRUCache(max_size=2)
        cache.set("a", 1, "f")
        cache.set("b", 2, "f")
        cache.set("a", 3, "f2")
        assert cache.size() == 2
        assert cache.evictions == 0
        entry = cache.get("a")
        assert entry is not None and entry.value == 3

    def test_batch_eviction_removes_oldest_tenth(self) -> None:
        """Inserting into a full cache of 20 evicts the two least recently used."""
        cache: LRUCache[int] = LRUCache(max_size=20)
        for i in range(20):
            cache.set(f"k{i}", i, "f")

        # Touch k0 and k1 so k2 and k3 become the oldest
        cache.get("k0")
        cache.get("k1")

        cache.set("new", 99, "f")

        assert cache.size() == 19
        assert cache.evictions == 2
        assert not cache.has("k2")
        assert not cache.has("k3")
        assert cache.has("k0")
        assert cache.has("k1")
        assert cache.has("new")

    def test_small_cache_evicts_at_least_one(self) -> None:
        cache: LRUCache[int] = LRUCache(max_size=3)
        for key in ("a", "b", "c"):
            cache.set(key, 0, "f")
        cache.set("d", 0, "f")
        assert cache.keys() == ["b", "c", "d"]
        assert cache.evictions == 1

    def test_keys_in_recency_order(self) -> None:
        cache: LRUCache[int] = LRUCache(max_size=5)
        for key in ("a", "b", "c"):
            cache.set(key, 0, "f")
        cache.get("a")
        assert cache.keys() == ["b", "c", "a"]

    def test_clear(self) -> None:
        cache: LRUCache[int] = LRUCache(max_size=5)
        cache.set("a", 1, "f")
        cache.clear()
        assert cache.size() == 0
        assert cache.capacity() == 5


class TestSkeletonCacheValidation:
    """Tests for fingerprint-validated reads."""

    def test_hit_while_content_unchanged(self, tmp_path: Path) -> None:
        path = tmp_path / "a.ts"
        path.write_text("export const a = 1;")
        cache: SkeletonCache[str] = SkeletonCache(max_size=10)

        assert cache.get_if_valid(str(path)) is None
        cache.set(str(path), "skeleton-a")
        assert cache.get_if_valid(str(path)) == "skeleton-a"

        stats = cache.stats()
        assert stats.hits == 1
        assert stats.misses == 1

    def test_content_change_invalidates(self, tmp_path: Path) -> None:
        """A hit is never returned once the bytes on disk differ."""
        path = tmp_path / "a.ts"
        path.write_text("export const a = 1;")
        cache: SkeletonCache[str] = SkeletonCache(max_size=10)
        cache.set(str(path), "old")

        path.write_text("export const a = 2;")

        assert cache.get_if_valid(str(path)) is None
        assert not cache.memory.has(str(path))
        assert cache.stats().invalidations == 1

    def test_deleted_file_invalidates(self, tmp_path: Path) -> None:
        path = tmp_path / "a.ts"
        path.write_text("x")
        cache: SkeletonCache[str] = SkeletonCache(max_size=10)
        cache.set(str(path), "value")
        path.unlink()
        assert cache.get_if_valid(str(path)) is None

    def test_set_skipped_when_file_missing(self, tmp_path: Path) -> None:
        cache: SkeletonCache[str] = SkeletonCache(max_size=10)
        cache.set(str(tmp_path / "missing.ts"), "value")
        assert cache.stats().size == 0

    def test_set_with_explicit_fingerprint(self, tmp_path: Path) -> None:
        path = tmp_path / "a.ts"
        path.write_text("x")
        cache: SkeletonCache[str] = SkeletonCache(max_size=10)
        cache.set(str(path), "value", fingerprint="not-the-real-hash")
        # The recorded fingerprint does not match the file, so the read misses
        assert cache.get_if_valid(str(path)) is None


class TestSkeletonCacheDebounce:
    """Tests for debounced invalidation."""

    def test_burst_coalesces_into_one_invalidation(self, tmp_path: Path) -> None:
        """Several events within the window produce exactly one callback."""
        path = tmp_path / "a.ts"
        path.write_text("x")
        cache: SkeletonCache[str] = SkeletonCache(max_size=10, debounce_ms=100)
        cache.set(str(path), "value")

        calls = []
        for _ in range(5):
            cache.invalidate_debounced(str(path), on_invalidated=lambda: calls.append(1))
            time.sleep(0.01)

        assert cache.has_pending(str(path))
        assert _wait_until(lambda: not cache.has_pending(str(path)))
        time.sleep(0.15)

        assert calls == [1]
        assert not cache.memory.has(str(path))
        assert cache.stats().invalidations == 1

    def test_quiet_period_restarts_on_every_event(self, tmp_path: Path) -> None:
        """A burst longer than the window fires once, one window after its last event."""
        path = tmp_path / "a.ts"
        path.write_text("x")
        cache: SkeletonCache[str] = SkeletonCache(max_size=10, debounce_ms=200)
        cache.set(str(path), "value")

        fired_at: List[float] = []
        for i in range(4):
            if i:
                time.sleep(0.1)
            cache.invalidate_debounced(
                str(path), on_invalidated=lambda: fired_at.append(time.monotonic())
            )
        last_event = time.monotonic()

        # The burst spans 0.3s, longer than the window, and nothing has fired yet
        assert fired_at == []
        assert cache.memory.has(str(path))

        assert _wait_until(lambda: bool(fired_at), timeout=2.0)
        time.sleep(0.3)

        assert len(fired_at) == 1
        assert fired_at[0] - last_event >= 0.15
        assert cache.stats().invalidations == 1

    def test_entry_survives_until_quiet_period_ends(self, tmp_path: Path) -> None:
        path = tmp_path / "a.ts"
        path.write_text("x")
        cache: SkeletonCache[str] = SkeletonCache(max_size=10, debounce_ms=300)
        cache.set(str(path), "value")

        cache.invalidate_debounced(str(path))

        assert cache.memory.has(str(path))
        assert cache.stats().pending_invalidations == 1
        assert _wait_until(lambda: not cache.memory.has(str(path)))

    def test_paths_debounce_independently(self, tmp_path: Path) -> None:
        cache: SkeletonCache[str] = SkeletonCache(max_size=10, debounce_ms=50)
        fired = []
        cache.invalidate_debounced("/ws/a.ts", on_invalidated=lambda: fired.append("a"))
        cache.invalidate_debounced("/ws/b.ts", on_invalidated=lambda: fired.append("b"))
        assert _wait_until(lambda: len(fired) == 2)
        assert sorted(fired) == ["a", "b"]

    def test_failing_callback_is_logged(self, tmp_path: Path) -> None:
        cache: SkeletonCache[str] = SkeletonCache(max_size=10, debounce_ms=10)

        def boom() -> None:
            raise RuntimeError("callback failure")

        cache.invalidate_debounced("/ws/a.ts", on_invalidated=boom)
        assert _wait_until(lambda: not cache.has_pending("/ws/a.ts"))

    def test_immediate_invalidate_cancels_timer(self, tmp_path: Path) -> None:
        path = tmp_path / "a.ts"
        path.write_text("x")
        cache: SkeletonCache[str] = SkeletonCache(max_size=10, debounce_ms=100)
        cache.set(str(path), "value")
        calls = []
        cache.invalidate_debounced(str(path), on_invalidated=lambda: calls.append(1))

        cache.invalidate(str(path))

        assert not cache.has_pending(str(path))
        assert not cache.memory.has(str(path))
        time.sleep(0.2)
        assert calls == []

    def test_clear_cancels_all_timers(self, tmp_path: Path) -> None:
        cache: SkeletonCache[str] = SkeletonCache(max_size=10, debounce_ms=100)
        calls = []
        cache.invalidate_debounced("/ws/a.ts", on_invalidated=lambda: calls.append(1))
        cache.invalidate_debounced("/ws/b.ts", on_invalidated=lambda: calls.append(1))

        cache.clear()

        assert cache.stats().pending_invalidations == 0
        time.sleep(0.2)
        assert calls == []


class TestSkeletonCacheThreadSafety:
    """Concurrent readers and writers."""

    def test_concurrent_access(self, tmp_path: Path) -> None:
        files = []
        for i in range(10):
            path = tmp_path / f"f{i}.ts"
            path.write_text(f"export const v{i} = {i};")
            files.append(str(path))
        cache: SkeletonCache[str] = SkeletonCache(max_size=5)
        errors = []

        def worker() -> None:
            try:
                for _ in range(20):
                    for path in files:
                        if cache.get_if_valid(path) is None:
                            cache.set(path, path)
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert cache.stats().size <= 5
