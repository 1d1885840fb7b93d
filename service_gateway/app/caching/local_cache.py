"""
In-process cache tier.
"""

import fnmatch
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger


@dataclass
class CacheEntry:
    """A cached value and the moment it was stored."""
    key: str
    value: Any
    stored_at: float
    ttl_seconds: int

    def is_valid(self, now: float) -> bool:
        # ttl <= 0 means no expiry
        if self.ttl_seconds <= 0:
            return True
        return now - self.stored_at < self.ttl_seconds


class LocalCache:
    """Bounded map with per-entry TTL and insertion-order eviction.

    Only touched from the event loop, so read-modify-write sequences are not
    interleaved. A threaded host would need a lock around ``set``.
    """

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        # dicts keep insertion order; the first key is always the oldest
        self._entries: Dict[str, CacheEntry] = {}
        self.evictions = 0
        self.logger = get_logger("gateway.cache.local")

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if key in self._entries:
            # re-inserted keys count as newest
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            self.purge_expired()
            while len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                self.evictions += 1
                self.logger.debug("Evicted local cache entry", key=oldest)

        self._entries[key] = CacheEntry(key, value, self._clock(), ttl_seconds)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        matching = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in matching:
            del self._entries[key]
        return len(matching)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def keys(self) -> List[str]:
        self.purge_expired()
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
