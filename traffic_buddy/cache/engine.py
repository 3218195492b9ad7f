"""In-memory TTL cache for Test Traffic Buddy."""

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from traffic_buddy.core.clock import MonotonicClock
from traffic_buddy.utils.logger import get_logger

MISSING = object()


@dataclass
class CacheEntry:
    """A cached value and its lifetime."""

    key: str
    value: Any
    stored_at: float
    ttl: float

    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_fresh(self, now: float) -> bool:
        return now < self.stored_at + self.ttl


class TTLCache:
    """Thread-safe keyed response cache with expiry and size bounding.

    Expired entries are treated as absent and dropped on lookup. When the
    store is full the oldest insertion is evicted before a new key is
    admitted. State lives for the lifetime of the process only.

    Example:
        >>> cache = TTLCache(max_size=100)
        >>> cache.put("GET:/api/cities:{}", ["Lisbon"], ttl=300)
        True
        >>> cache.get("GET:/api/cities:{}")
        ['Lisbon']
    """

    def __init__(self, max_size: int = 1000, clock=None) -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries kept at once
            clock: Clock used for expiry (defaults to the monotonic clock)
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.clock = clock or MonotonicClock()
        self.logger = get_logger("cache.engine")
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "sets": 0,
            "expired": 0,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for ``key``, or ``default`` if missing or expired."""
        value = self.lookup(key)
        return default if value is MISSING else value

    def lookup(self, key: str) -> Any:
        """Like ``get`` but returns the ``MISSING`` sentinel so ``None`` can be cached."""
        key = str(key)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return MISSING
            if not entry.is_fresh(self.clock.now()):
                del self._entries[key]
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                return MISSING
            self._stats["hits"] += 1
            return entry.value

    def put(self, key: str, value: Any, ttl: float) -> bool:
        """Store ``value`` under ``key`` for ``ttl`` seconds.

        Args:
            key: Request key
            value: Value to cache
            ttl: Lifetime in seconds; non-positive values disable caching

        Returns:
            True if the value was stored, False otherwise
        """
        if ttl is None or ttl <= 0:
            return False
        key = str(key)
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            else:
                self._evict_if_needed()
            self._entries[key] = CacheEntry(key=key, value=value, stored_at=self.clock.now(), ttl=ttl)
            self._stats["sets"] += 1
        return True

    def _evict_if_needed(self) -> None:
        """Evict the oldest insertions until there is room for one more entry."""
        while len(self._entries) >= self.max_size:
            evicted_key, _ = self._entries.popitem(last=False)
            self._stats["evictions"] += 1
            self.logger.debug(f"Evicted cache entry {evicted_key}")

    def invalidate(self, key: str) -> bool:
        """Remove ``key`` from the cache. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(str(key), None) is not None

    def clear(self) -> int:
        """Remove every entry and return how many were dropped."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def cleanup_expired(self) -> int:
        """Drop all expired entries and return how many were removed."""
        with self._lock:
            now = self.clock.now()
            expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
            for key in expired:
                del self._entries[key]
            self._stats["expired"] += len(expired)
        if expired:
            self.logger.debug(f"Removed {len(expired)} expired cache entries")
        return len(expired)

    def entries(self) -> Dict[str, float]:
        """Return each fresh key with its remaining TTL in seconds."""
        with self._lock:
            now = self.clock.now()
            return {
                key: entry.expires_at() - now for key, entry in self._entries.items() if entry.is_fresh(now)
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key) -> bool:
        with self._lock:
            entry = self._entries.get(str(key))
            return entry is not None and entry.is_fresh(self.clock.now())

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def get_cache_performance(self) -> Dict[str, Any]:
        """Return cache performance metrics."""
        stats = self.get_stats()
        lookups = stats["hits"] + stats["misses"]
        return {
            "total_entries": len(self),
            "max_entries": self.max_size,
            "expired_entries": stats["expired"],
            "hit_rate": stats["hits"] / lookups if lookups > 0 else 0.0,
            "evictions": stats["evictions"],
            "sets": stats["sets"],
        }


class CacheSweeper:
    """Background thread that periodically drops expired cache entries.

    Bounds memory independently of lookup traffic. Stop it with ``stop()``.
    """

    def __init__(self, cache: TTLCache, interval: float = 300.0) -> None:
        self.cache = cache
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("Cache sweeper is already running")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="traffic-buddy-cache-sweeper", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.cache.cleanup_expired()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
