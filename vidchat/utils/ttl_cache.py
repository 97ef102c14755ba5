"""
In-memory TTL cache shared by the transcript fetcher and the metadata client.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheStats:
    """Expose basic cache metrics for diagnostics."""

    label: str
    size: int
    stale: int
    hits: int
    misses: int
    ttl_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "size": self.size,
            "stale": self.stale,
            "hits": self.hits,
            "misses": self.misses,
            "ttl_seconds": self.ttl_seconds,
        }


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    stored_at: float


class TTLCache(Generic[T]):
    """
    Keyed cache whose entries are readable while ``now - stored_at < ttl``.

    Stale entries are not evicted; they stay in place until the next ``set``
    for the same key overwrites them.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        *,
        label: str = "ttl_cache",
        clock: Optional[Callable[[], float]] = None,
    ):
        self.ttl_seconds = max(0.001, float(ttl_seconds))
        self.label = label
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._store: Dict[str, CacheEntry[T]] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[T]:
        """Return the value for ``key`` if it is still fresh."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None or not self._is_fresh(entry):
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def peek(self, key: str) -> Optional[CacheEntry[T]]:
        """Return the raw entry, fresh or stale, without touching counters."""
        with self._lock:
            return self._store.get(key)

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._store[key] = CacheEntry(value=value, stored_at=self._clock())

    def invalidate(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._store.clear()
            else:
                self._store.pop(key, None)

    def describe(self) -> CacheStats:
        with self._lock:
            stale = sum(1 for entry in self._store.values() if not self._is_fresh(entry))
            return CacheStats(
                label=self.label,
                size=len(self._store),
                stale=stale,
                hits=self._hits,
                misses=self._misses,
                ttl_seconds=self.ttl_seconds,
            )

    def _is_fresh(self, entry: CacheEntry[T]) -> bool:
        return self._clock() - entry.stored_at < self.ttl_seconds

    def __len__(self) -> int:  # pragma: no cover - trivial wrapper
        with self._lock:
            return len(self._store)
