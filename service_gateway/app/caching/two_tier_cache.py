"""
Two-tier JSON cache: Redis first, in-process map as fallback and backup.
"""

import json
from typing import Any, Dict, Optional, TYPE_CHECKING

from shared.logging import get_logger
from .local_cache import LocalCache
from .redis_tier import CacheTierError, RedisTier

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TTL = 300

RELATED_PATTERNS = ("quiz_*", "user_*", "category_*", "search_*")


class TwoTierCache:
    """Get/set/invalidate over a shared remote tier and a local tier.

    Lookups never raise: a failing remote tier is treated as a miss and the
    local tier answers instead. Writes always land in the local tier so it
    stays warm while Redis is down.
    """

    def __init__(
        self,
        remote: Optional[RedisTier] = None,
        local: Optional[LocalCache] = None,
        *,
        default_ttl: int = DEFAULT_TTL,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.remote = remote
        self.local = local or LocalCache()
        self.default_ttl = default_ttl
        self.metrics = metrics
        self.logger = get_logger("gateway.cache")

        self.stats: Dict[str, int] = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "remote_hits": 0,
            "local_hits": 0,
            "errors": 0,
        }

    @property
    def remote_connected(self) -> bool:
        return self.remote is not None and self.remote.connected

    def _remote_usable(self) -> bool:
        return self.remote is not None and self.remote.usable()

    async def connect(self) -> bool:
        if self.remote is None:
            self.logger.info("Memory cache only (no remote tier configured)")
            return False
        return await self.remote.connect()

    async def disconnect(self) -> None:
        if self.remote is not None:
            await self.remote.disconnect()

    def _record(self, tier: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache(tier, result)

    def _tier_failed(self, operation: str, key: str, exc: CacheTierError) -> None:
        self.stats["errors"] += 1
        self._record("remote", "error")
        self.logger.debug("Remote cache tier failed", operation=operation, key=key, error=str(exc))

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value for ``key`` or ``None``."""
        if self._remote_usable():
            try:
                raw = await self.remote.get(key)
            except CacheTierError as exc:
                self._tier_failed("get", key, exc)
            else:
                if raw is not None:
                    try:
                        value = json.loads(raw)
                    except (TypeError, ValueError):
                        self.logger.warning("Discarding undecodable cache payload", key=key)
                    else:
                        self.stats["hits"] += 1
                        self.stats["remote_hits"] += 1
                        self._record("remote", "hit")
                        self.logger.debug("Redis cache hit", key=key)
                        return value

        value = self.local.get(key)
        if value is not None:
            self.stats["hits"] += 1
            self.stats["local_hits"] += 1
            self._record("local", "hit")
            self.logger.debug("Memory cache hit", key=key)
            return value

        self.stats["misses"] += 1
        self._record("local", "miss")
        return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Store ``value`` in both tiers. Returns whether the remote write landed."""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        stored_remotely = False

        if self._remote_usable():
            try:
                await self.remote.set(key, json.dumps(value), ttl)
                stored_remotely = True
                self.logger.debug("Redis cache set", key=key, ttl=ttl)
            except CacheTierError as exc:
                self._tier_failed("set", key, exc)

        self.local.set(key, value, ttl)
        self.stats["sets"] += 1
        self._record("local", "set")
        return stored_remotely

    async def delete(self, key: str) -> bool:
        removed = self.local.delete(key)
        if self._remote_usable():
            try:
                removed = bool(await self.remote.delete(key)) or removed
            except CacheTierError as exc:
                self._tier_failed("delete", key, exc)
        if removed:
            self.stats["deletes"] += 1
        return removed

    async def exists(self, key: str) -> bool:
        if self._remote_usable():
            try:
                if await self.remote.exists(key):
                    return True
            except CacheTierError as exc:
                self._tier_failed("exists", key, exc)
        return key in self.local

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching the glob ``pattern`` from both tiers."""
        removed = self.local.delete_pattern(pattern)

        if self._remote_usable():
            try:
                keys = await self.remote.keys(pattern)
                if keys:
                    removed += await self.remote.delete(*keys)
            except CacheTierError as exc:
                self._tier_failed("invalidate_pattern", pattern, exc)

        if removed:
            self.stats["deletes"] += removed
            self.logger.info("Invalidated cache keys", pattern=pattern, keys_count=removed)
        return removed

    async def invalidate_related(self, key: str) -> int:
        """Coarse invalidation for data related to a changed entity id."""
        total = 0
        for pattern in (f"*{key}*",) + RELATED_PATTERNS:
            total += await self.invalidate_pattern(pattern)
        return total

    async def get_stats(self) -> Dict[str, Any]:
        """Connectivity, local tier contents and counters."""
        remote: Dict[str, Any] = {
            "configured": self.remote is not None,
            "connected": self.remote_connected,
        }
        if self.remote_connected:
            try:
                remote["keys"] = await self.remote.dbsize()
            except CacheTierError as exc:
                self._tier_failed("dbsize", "*", exc)
                remote["connected"] = False

        lookups = self.stats["hits"] + self.stats["misses"]
        local_keys = self.local.keys()
        return {
            "remote": remote,
            "local": {
                "size": len(local_keys),
                "max_size": self.local.max_size,
                "evictions": self.local.evictions,
                "keys": local_keys,
            },
            "counters": dict(self.stats),
            "hit_ratio": round(self.stats["hits"] / lookups, 4) if lookups else 0.0,
        }
