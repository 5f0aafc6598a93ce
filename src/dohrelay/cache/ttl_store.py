from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, NamedTuple, Optional

""" Bounded in-memory store for upstream DoH answers.

Brief:
  Thread-safe key -> payload map where each entry carries its own TTL.

Notes:
  - Expired entries are removed lazily, on the get() that finds them.
  - When the store is full, put() evicts a fixed-size batch of the
    oldest-inserted entries before inserting. This is an approximate bound
    with no recency tracking, not an LRU.
"""


_logger = logging.getLogger("dohrelay.cache")

DEFAULT_MAX_ENTRIES = 5000
DEFAULT_EVICT_BATCH = 100
DEFAULT_TTL_MS = 300_000


class CacheEntry(NamedTuple):
    payload: bytes
    created: float
    ttl_ms: int

    def is_valid(self, now: float) -> bool:
        return (now - self.created) * 1000.0 < self.ttl_ms


class CacheStore:
    """Thread-safe payload cache with per-entry TTL and batch eviction.

    Brief:
        Entries are valid while ``now - created < ttl``. Re-putting a key
        replaces its entry wholesale and makes it the newest insertion.

    Inputs:
        - max_entries: Capacity bound (entries held before eviction kicks in).
        - evict_batch: Number of oldest-inserted entries dropped on overflow.
        - default_ttl_ms: TTL used when put() is called without one.
        - clock: Monotonic clock returning seconds (injectable for tests).

    Outputs:
        CacheStore instance

    Example use:
        >>> store = CacheStore()
        >>> store.put("wire:abc", b"answer", 60_000)
        >>> store.get("wire:abc")
        b'answer'
        >>> store.get("missing") is None
        True
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        evict_batch: int = DEFAULT_EVICT_BATCH,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if int(max_entries) <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = int(max_entries)
        # A batch of at least one keeps put() from ever exceeding the bound.
        self.evict_batch = max(1, int(evict_batch))
        self.default_ttl_ms = max(0, int(default_ttl_ms))
        self._clock = clock
        # dict preserves insertion order, which drives batch eviction.
        self._store: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

        # Best-effort counters for the /health snapshot.
        self.cache_hits: int = 0
        self.cache_misses: int = 0
        self.evictions_ttl: int = 0
        self.evictions_capacity: int = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)  # type: ignore[arg-type]
            return entry is not None and entry.is_valid(now)

    def get(self, key: str) -> Optional[bytes]:
        """
        Retrieves a payload from the cache.

        Inputs:
            key: Derived cache key.

        Outputs:
            The cached payload, or None if the key is absent or has expired.
            An expired entry is removed as part of the lookup.
        """
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self.cache_misses += 1
                return None

            if not entry.is_valid(now):
                del self._store[key]
                self.cache_misses += 1
                self.evictions_ttl += 1
                _logger.debug("Cache TTL eviction (get): key=%s", key)
                return None

            self.cache_hits += 1
            return entry.payload

    def put(self, key: str, payload: bytes, ttl_ms: Optional[int] = None) -> None:
        """
        Stores a payload under key.

        Inputs:
            key: Derived cache key.
            payload: Opaque bytes to cache.
            ttl_ms: Time-to-live in milliseconds; default_ttl_ms when None.
        Outputs:
            None
        """
        ttl = self.default_ttl_ms if ttl_ms is None else max(0, int(ttl_ms))
        entry = CacheEntry(bytes(payload), self._clock(), ttl)
        with self._lock:
            if self._store.pop(key, None) is None:
                if len(self._store) >= self.max_entries:
                    self._evict_batch_locked()
            self._store[key] = entry

    def _evict_batch_locked(self) -> int:
        """Brief: Drop up to ``evict_batch`` oldest-inserted entries.

        Outputs:
          - int: Number of entries removed.
        """

        victims = []
        for k in self._store:
            victims.append(k)
            if len(victims) >= self.evict_batch:
                break
        for k in victims:
            del self._store[k]
        self.evictions_capacity += len(victims)
        _logger.debug(
            "Cache size eviction: removed=%d remaining=%d",
            len(victims),
            len(self._store),
        )
        return len(victims)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._store),
                "max_entries": self.max_entries,
                "hits": self.cache_hits,
                "misses": self.cache_misses,
                "evictions_ttl": self.evictions_ttl,
                "evictions_capacity": self.evictions_capacity,
            }
