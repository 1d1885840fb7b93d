"""
Gateway caching package.

Aggregated documents are cached in two tiers: Redis as the shared primary
and an in-process map as fallback. Entries expire by TTL; explicit
invalidation is available to callers but not wired to the handlers.
"""

from .local_cache import CacheEntry, LocalCache
from .redis_tier import CacheTierError, RedisTier
from .two_tier_cache import TwoTierCache

__all__ = ["CacheEntry", "LocalCache", "CacheTierError", "RedisTier", "TwoTierCache"]
