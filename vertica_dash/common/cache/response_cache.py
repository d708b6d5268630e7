"""
In-memory response cache with per-entry TTL and a global key limit.

Expired entries are never returned: get() checks the expiry on every read and
purge_expired() sweeps the rest periodically. Values are deep-copied on write,
so later mutation of the caller's object does not leak into the cache. Values
returned by get() are the stored objects and must be treated as read-only.

Capacity policy: writing a new key into a full cache first purges expired
entries; if the cache is still full, the entry closest to expiry is evicted
(oldest insertion breaks ties).

Example:
    cache = ResponseCache(default_ttl=300, max_keys=100)
    cache.set("bp:advertisers", [{"id": 1}], ttl=3600)
    cache.get("bp:advertisers")           # [{'id': 1}]
    cache.delete_by_prefix("bp:")         # 1
"""
import copy
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    created_at: float
    value_size: int

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def _approx_size(value: Any) -> int:
    try:
        return len(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return len(repr(value))


class ResponseCache:
    """Process-wide key/value store shared by every route handler."""

    def __init__(
        self,
        default_ttl: int = 300,
        max_keys: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            default_ttl: TTL in seconds used when set() gets none (0 = no expiry)
            max_keys: Maximum number of keys held at once
            clock: Monotonic clock, injectable for tests
        """
        if max_keys < 1:
            raise ValueError("max_keys must be at least 1")
        self.default_ttl = default_ttl
        self.max_keys = max_keys
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        logger.info("Cache manager initialized (TTL: %ss, maxKeys: %d)", default_ttl, max_keys)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key (value plus insertion time), counting a hit or miss."""
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            del self._entries[key]
            entry = None

        if entry is None:
            self._misses += 1
            logger.debug("Cache MISS: %s", key)
            return None

        self._hits += 1
        logger.debug("Cache HIT: %s", key)
        return entry

    def age(self, entry: CacheEntry) -> float:
        """Seconds since the entry was stored."""
        return max(0.0, self._clock() - entry.created_at)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Insert or overwrite a value.

        Args:
            key: Cache key
            value: Any value; stored as a deep copy
            ttl: Seconds to live; None uses the default, 0 never expires

        Returns:
            True once stored
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl}")

        now = self._clock()
        if key not in self._entries and len(self._entries) >= self.max_keys:
            self._make_room()

        stored = copy.deepcopy(value)
        self._entries[key] = CacheEntry(
            value=stored,
            expires_at=now + ttl if ttl > 0 else math.inf,
            created_at=now,
            value_size=_approx_size(stored),
        )
        logger.info("Cache SET: %s (TTL: %ss)", key, ttl)
        return True

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def keys(self) -> List[str]:
        now = self._clock()
        return [key for key, entry in self._entries.items() if not entry.is_expired(now)]

    def delete(self, keys: Union[str, Iterable[str]]) -> int:
        """Remove one or more keys. Returns how many were actually removed."""
        if isinstance(keys, str):
            keys = [keys]
        keys = list(keys)
        deleted = 0
        for key in keys:
            if self._entries.pop(key, None) is not None:
                deleted += 1
        logger.info("Cache DEL: %s (%d deleted)", ", ".join(keys), deleted)
        return deleted

    def delete_by_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix."""
        return self.delete([key for key in self._entries if key.startswith(prefix)])

    def flush(self) -> None:
        self._entries.clear()
        logger.info("Cache FLUSH: all keys cleared")

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Cleaned up %d expired cache entries", len(expired))
        return len(expired)

    def stats(self) -> Dict[str, int]:
        return {
            "keys": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "approx_key_size": sum(len(key) for key in self._entries),
            "approx_value_size": sum(entry.value_size for entry in self._entries.values()),
            "evictions": self._evictions,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def _make_room(self) -> None:
        self.purge_expired()
        if len(self._entries) < self.max_keys:
            return
        victim = min(
            self._entries,
            key=lambda k: (self._entries[k].expires_at, self._entries[k].created_at),
        )
        del self._entries[victim]
        self._evictions += 1
        logger.warning("Cache full (%d keys), evicted %s", self.max_keys, victim)
