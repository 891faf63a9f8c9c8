"""
TTLCache - In-memory response cache with per-entry expiration.

Features:
- Per-entry TTL; expired entries are logically absent on read
- Lazy eviction on read plus an eager cleanup() sweep
- Deterministic, order-independent key generation
- No size bound other than TTL expiry
"""

import hashlib
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable

from loguru import logger


@dataclass
class CacheEntry:
    """A single cache entry with metadata."""

    key: str
    data: Any
    created_at: datetime
    ttl: timedelta

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now - self.created_at > self.ttl


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expirations": self.expirations,
            "size": self.size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class TTLCache:
    """
    Key/value store with per-entry expiration.

    Usage:
        cache = TTLCache()
        key = cache.generate_key("weather", {"city": "Tokyo"})

        data = cache.get(key)
        if data is None:
            data = await fetch_data()
            cache.set(key, data, ttl=timedelta(minutes=30))
    """

    def __init__(
        self,
        default_ttl: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        self._entries: dict[str, CacheEntry] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats()

    @staticmethod
    def generate_key(namespace: str, params: dict[str, Any] | None = None) -> str:
        """
        Generate a cache key from a namespace and request parameters.

        Parameter order does not matter; strings are stripped and lower-cased
        so "Tokyo" and " tokyo" share an entry.
        """
        if not params:
            return namespace

        parts = []
        for name, value in sorted(params.items()):
            if value is None:
                continue
            parts.append(f"{name}={_normalize(value)}")
        full_key = f"{namespace}:{'&'.join(parts)}"

        # Hash long keys
        if len(full_key) > 200:
            hash_val = hashlib.md5(full_key.encode()).hexdigest()[:16]
            return f"{namespace}:{hash_val}"

        return full_key

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}")
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._stats.misses += 1
            self._stats.expirations += 1
            self._log(f"EXPIRED: {key[:50]}")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {key[:50]}")
        return entry.data

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def set(self, key: str, data: Any, ttl: timedelta | None = None) -> None:
        """Store a value, replacing any previous entry for the key."""
        ttl = ttl if ttl is not None else self._default_ttl
        self._entries[key] = CacheEntry(
            key=key,
            data=data,
            created_at=self._clock(),
            ttl=ttl,
        )
        self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

    def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if key in self._entries:
            del self._entries[key]
            self._log(f"DELETE: {key[:50]}")
            return True
        return False

    def clear(self) -> None:
        """Clear all cache entries."""
        count = len(self._entries)
        self._entries.clear()
        self._log(f"CLEAR: {count} entries removed")

    def cleanup(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        expired_keys = [k for k, v in self._entries.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            self._stats.expirations += len(expired_keys)
            self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

        return len(expired_keys)

    def __len__(self) -> int:
        # Physical size; may include expired entries not yet swept
        return len(self._entries)

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        self._stats.size = len(self._entries)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[TTLCache] {message}")


def _normalize(value: Any) -> str:
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "value"):
        # Enum members
        return str(value.value)
    return str(value)
