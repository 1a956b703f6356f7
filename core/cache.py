"""
In-process TTL cache for aggregation responses.

Provides:
- TTL-based expiration with lazy eviction (expired entries are removed on
  the lookup that finds them; there is no background sweep)
- Deterministic key derivation
- Statistics tracking

One instance is injected per service (server tier, 10 minutes) or per
dashboard loader (client tier, 5 minutes); there is no module-level cache.

Usage:
    from core.cache import TTLCache, server_cache_key

    cache = TTLCache(ttl_seconds=600)
    key = server_cache_key(user_id, "batch", window)
    data = cache.get(key)
    if data is None:
        data = await build()
        cache.set(key, data)
"""
import hashlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from core.dates import DateWindow
from core.observability import get_logger

logger = get_logger(__name__)

MAX_KEY_LENGTH = 200


@dataclass
class CacheStats:
    """Cache statistics for monitoring."""

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    sets: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expirations": self.expirations,
            "sets": self.sets,
            "invalidations": self.invalidations,
            "hit_rate_percent": round(self.hit_rate, 2),
        }

    def reset(self) -> None:
        """Reset all counters."""
        self.hits = 0
        self.misses = 0
        self.expirations = 0
        self.sets = 0
        self.invalidations = 0


@dataclass
class CacheEntry:
    key: str
    timestamp: float
    data: Any


class TTLCache:
    """
    Key/value cache whose entries expire after a fixed TTL.

    The clock is injectable so tests can advance time without sleeping.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp < self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value or None if missing or expired
        """
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            logger.debug(f"Cache MISS: {key}")
            return None

        if not self._is_fresh(entry):
            del self._entries[key]
            self._stats.misses += 1
            self._stats.expirations += 1
            logger.debug(f"Cache EXPIRED: {key}")
            return None

        self._stats.hits += 1
        logger.debug(f"Cache HIT: {key}")
        return entry.data

    def set(self, key: str, data: Any) -> None:
        """Store a value, replacing any previous entry and restarting its TTL."""
        self._entries[key] = CacheEntry(key=key, timestamp=self._clock(), data=data)
        self._stats.sets += 1
        logger.debug(f"Cache SET: {key}")

    def invalidate(self, key: str) -> bool:
        """
        Remove a key from cache.

        Returns:
            True if an entry was removed
        """
        removed = self._entries.pop(key, None) is not None
        if removed:
            self._stats.invalidations += 1
            logger.debug(f"Cache INVALIDATE: {key}")
        return removed

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        self._stats.invalidations += count

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def get_stats(self) -> dict:
        """Get cache statistics."""
        return {
            "entries": len(self._entries),
            "ttl_seconds": self.ttl_seconds,
            **self._stats.to_dict(),
        }


def build_cache_key(prefix: str, *parts: Any) -> str:
    """
    Build a deterministic cache key from its parts.

    None parts are kept as empty segments so positions stay stable. Keys
    longer than 200 characters are hashed.
    """
    key_parts = [prefix]
    for part in parts:
        if isinstance(part, bool):
            key_parts.append("1" if part else "0")
        elif part is None:
            key_parts.append("")
        else:
            key_parts.append(str(part))

    key_str = ":".join(key_parts)

    # Hash if too long
    if len(key_str) > MAX_KEY_LENGTH:
        hash_suffix = hashlib.md5(key_str.encode()).hexdigest()[:12]
        key_str = f"{prefix}:{hash_suffix}"

    return key_str


def server_cache_key(user_id: str, endpoint: Optional[str], window: DateWindow) -> str:
    """Server tier key: (user, endpoint or 'batch', window)."""
    return build_cache_key("meli", user_id, endpoint or "batch", window.from_iso, window.to_iso)
