"""
Caching layer for expensive scoring operations.

Provides:
- In-memory cache with TTL and a capacity bound
- Single-flight get_or_compute so concurrent misses on one key compute once
- Cache decorator for plain functions
- Key generation helpers

Usage:
    cache = InMemoryCache(default_ttl=1800)
    result = cache.get_or_compute(key, lambda: expensive(arg))
"""
import functools
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheEntry:
    """A single cache entry with value and metadata."""
    value: Any
    created_at: float
    ttl: float  # Time-to-live in seconds
    hits: int = 0

    @property
    def expires_at(self) -> float:
        """Get expiration timestamp."""
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        """Entries are valid while age < ttl."""
        return now >= self.expires_at


class InMemoryCache:
    """
    In-memory cache with TTL support.

    Thread-safe. Stale entries are evicted when they are read; when the
    cache is full, expired entries are purged first and then the oldest
    entry is dropped.
    """

    def __init__(
        self,
        default_ttl: float = 1800,
        max_size: Optional[int] = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl: Default time-to-live in seconds
            max_size: Maximum number of entries (None for unbounded)
            clock: Time source, injectable for tests
        """
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock

        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}

        # Statistics
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "evictions": 0,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a value from the cache.

        Args:
            key: Cache key
            default: Returned when the key is missing or stale

        Returns:
            Cached value or default if not found/expired
        """
        with self._lock:
            value = self._get_locked(key)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Set a value in the cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds (uses default if None)
        """
        with self._lock:
            self._set_locked(key, value, ttl)

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value, computing and storing it on a miss.

        Only one caller computes a given key at a time; others wait on the
        key lock and then read the freshly stored value.
        """
        with self._lock:
            value = self._get_locked(key)
            if value is not _MISSING:
                return value
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            try:
                with self._lock:
                    value = self._peek_locked(key)
                if value is not _MISSING:
                    return value

                logger.debug(f"Cache miss for {key}, computing")
                value = compute()

                with self._lock:
                    self._set_locked(key, value, ttl)
                return value
            finally:
                with self._lock:
                    if self._key_locks.get(key) is key_lock:
                        del self._key_locks[key]

    def delete(self, key: str) -> bool:
        """
        Delete a key from the cache.

        Returns:
            True if key was deleted, False if not found
        """
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns number removed."""
        with self._lock:
            keys = [k for k in self._cache if k.startswith(prefix)]
            for k in keys:
                del self._cache[k]
            return len(keys)

    def clear(self) -> int:
        """
        Clear all entries from the cache.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    def exists(self, key: str) -> bool:
        """Check if a key exists and is not expired."""
        with self._lock:
            return self._get_locked(key, count=False) is not _MISSING

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total_requests = self._stats["hits"] + self._stats["misses"]
            hit_rate = (
                self._stats["hits"] / total_requests
                if total_requests > 0 else 0
            )

            return {
                **self._stats,
                "size": len(self._cache),
                "max_size": self.max_size,
                "hit_rate": f"{hit_rate:.2%}",
            }

    # ------------------------------------------------------------------
    # Internals (caller holds self._lock)
    # ------------------------------------------------------------------

    def _get_locked(self, key: str, count: bool = True) -> Any:
        entry = self._cache.get(key)

        if entry is None:
            if count:
                self._stats["misses"] += 1
            return _MISSING

        if entry.is_expired(self._clock()):
            del self._cache[key]
            if count:
                self._stats["misses"] += 1
            return _MISSING

        if count:
            entry.hits += 1
            self._stats["hits"] += 1
        return entry.value

    def _peek_locked(self, key: str) -> Any:
        entry = self._cache.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return _MISSING
        return entry.value

    def _set_locked(self, key: str, value: Any, ttl: Optional[float]) -> None:
        if ttl is None:
            ttl = self.default_ttl

        if (
            self.max_size is not None
            and len(self._cache) >= self.max_size
            and key not in self._cache
        ):
            self._purge_expired()
            if len(self._cache) >= self.max_size:
                self._evict_oldest()

        self._cache[key] = CacheEntry(
            value=value,
            created_at=self._clock(),
            ttl=ttl,
        )
        self._stats["sets"] += 1

    def _purge_expired(self) -> None:
        now = self._clock()
        expired_keys = [
            key for key, entry in self._cache.items()
            if entry.is_expired(now)
        ]
        for key in expired_keys:
            del self._cache[key]

        if expired_keys:
            logger.debug(f"Cache cleanup: removed {len(expired_keys)} expired entries")

    def _evict_oldest(self) -> None:
        """Evict the oldest entry from the cache."""
        if not self._cache:
            return

        oldest_key = min(
            self._cache.keys(),
            key=lambda k: self._cache[k].created_at
        )
        del self._cache[oldest_key]
        self._stats["evictions"] += 1


# Process-wide instance for the HTTP layer; components take an injected cache
_cache: Optional[InMemoryCache] = None


def get_cache() -> InMemoryCache:
    """Get or create the shared cache instance."""
    global _cache
    if _cache is None:
        from site_engine.core.config import get_settings

        settings = get_settings()
        _cache = InMemoryCache(
            default_ttl=settings.cache_ttl_seconds,
            max_size=settings.cache_max_size,
        )
    return _cache


def reset_cache() -> None:
    """Drop the shared cache instance. Useful for tests."""
    global _cache
    _cache = None


def generate_cache_key(*args, prefix: str = "", **kwargs) -> str:
    """
    Generate a cache key from arguments.

    Args:
        *args: Positional arguments to include in key
        prefix: Optional prefix for the key
        **kwargs: Keyword arguments to include in key

    Returns:
        Hash-based cache key
    """
    key_data = {
        "args": [str(a) for a in args],
        "kwargs": {k: str(v) for k, v in sorted(kwargs.items())}
    }

    key_str = json.dumps(key_data, sort_keys=True)
    key_hash = hashlib.md5(key_str.encode()).hexdigest()[:16]

    if prefix:
        return f"{prefix}:{key_hash}"
    return key_hash


def cached(
    cache: InMemoryCache,
    ttl: Optional[float] = None,
    key_prefix: str = "",
    key_builder: Optional[Callable[..., str]] = None
):
    """
    Decorator to cache function results in the given cache.

    Example:
        @cached(cache, ttl=600, key_prefix="features")
        def commercial_features(lat, lng):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if key_builder:
                key = key_builder(*args, **kwargs)
            else:
                prefix = key_prefix or func.__name__
                key = generate_cache_key(*args, prefix=prefix, **kwargs)

            return cache.get_or_compute(key, lambda: func(*args, **kwargs), ttl=ttl)

        wrapper.cache_clear = cache.clear
        wrapper.cache_stats = cache.get_stats
        return wrapper
    return decorator
