"""
Unit tests for the two-tier cache and its Redis tier.
"""

import fnmatch
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_gateway.app.caching.local_cache import LocalCache
from service_gateway.app.caching.redis_tier import CacheTierError, RedisTier
from service_gateway.app.caching.two_tier_cache import TwoTierCache


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis``."""

    def __init__(self, clock):
        self.clock = clock
        self.data = {}
        self.down = False
        self.calls = []

    def _check(self, name):
        self.calls.append(name)
        if self.down:
            raise RedisConnectionError("Connection refused")

    def _live(self, key):
        value, expires_at = self.data.get(key, (None, None))
        if expires_at is not None and self.clock() >= expires_at:
            del self.data[key]
            return None
        return value

    async def ping(self):
        self._check("ping")
        return True

    async def get(self, key):
        self._check("get")
        return self._live(key)

    async def setex(self, key, ttl, value):
        self._check("setex")
        self.data[key] = (value, self.clock() + ttl)

    async def set(self, key, value):
        self._check("set")
        self.data[key] = (value, None)

    async def delete(self, *keys):
        self._check("delete")
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def exists(self, key):
        self._check("exists")
        return 1 if self._live(key) is not None else 0

    async def keys(self, pattern):
        self._check("keys")
        return [key for key in list(self.data) if fnmatch.fnmatchcase(key, pattern)]

    async def dbsize(self):
        self._check("dbsize")
        return len(self.data)

    async def aclose(self):
        pass


class TestTwoTierCache:
    """Test cases for TwoTierCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def fake_redis(self, clock):
        return FakeRedis(clock)

    @pytest.fixture
    def remote(self, fake_redis, clock):
        return RedisTier(client=fake_redis, clock=clock, reconnect_interval=30)

    @pytest.fixture
    def cache(self, remote, clock):
        return TwoTierCache(remote=remote, local=LocalCache(max_size=10, clock=clock))

    @pytest.mark.asyncio
    async def test_get_after_set_hits_remote(self, cache, fake_redis):
        """Test values round-trip through the remote tier as JSON."""
        assert await cache.connect() is True

        stored = await cache.set("quiz_1", {"_id": "1", "_cached": False}, 300)

        assert stored is True
        assert json.loads(fake_redis.data["quiz_1"][0]) == {"_id": "1", "_cached": False}
        assert await cache.get("quiz_1") == {"_id": "1", "_cached": False}
        assert cache.stats["remote_hits"] == 1

    @pytest.mark.asyncio
    async def test_value_expires_after_ttl(self, cache, clock):
        """Test a value is absent once its TTL has passed in both tiers."""
        await cache.connect()
        await cache.set("quiz_1", {"_id": "1"}, 10)

        clock.advance(11)

        assert await cache.get("quiz_1") is None
        assert cache.stats["misses"] == 1

    @pytest.mark.asyncio
    async def test_remote_down_falls_back_to_local(self, cache, fake_redis):
        """Test set then get still works while Redis is down."""
        await cache.connect()
        fake_redis.down = True

        stored = await cache.set("user_1", {"_id": "u1"}, 300)
        value = await cache.get("user_1")

        assert stored is False
        assert value == {"_id": "u1"}
        assert cache.stats["local_hits"] == 1
        assert cache.remote_connected is False

    @pytest.mark.asyncio
    async def test_remote_miss_falls_through_to_local(self, cache, fake_redis):
        """Test the local tier answers when Redis lost the key."""
        await cache.connect()
        await cache.set("quiz_2", [1, 2, 3], 300)
        fake_redis.data.clear()

        assert await cache.get("quiz_2") == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_never_connected_is_local_only(self, fake_redis, clock):
        """Test the remote tier is untouched until connect() runs."""
        cache = TwoTierCache(remote=RedisTier(client=fake_redis, clock=clock),
                             local=LocalCache(clock=clock))

        await cache.set("k", "v")
        assert await cache.get("k") == "v"
        assert fake_redis.calls == []
        assert cache.stats["errors"] == 0

    @pytest.mark.asyncio
    async def test_connect_failure_degrades_quietly(self, fake_redis, clock):
        """Test a failing ping leaves the cache usable in local mode."""
        fake_redis.down = True
        cache = TwoTierCache(remote=RedisTier(client=fake_redis, clock=clock),
                             local=LocalCache(clock=clock))

        assert await cache.connect() is False
        await cache.set("k", "v")
        assert await cache.get("k") == "v"

    @pytest.mark.asyncio
    async def test_reconnect_attempt_after_interval(self, cache, fake_redis, clock):
        """Test the remote tier is retried only after the reconnect interval."""
        await cache.connect()
        fake_redis.down = True
        await cache.get("missing")
        assert cache.remote_connected is False

        fake_redis.down = False
        fake_redis.calls.clear()
        await cache.get("missing")
        assert fake_redis.calls == []

        clock.advance(31)
        await cache.set("k", "v", 300)
        assert cache.remote_connected is True
        assert "ping" in fake_redis.calls
        assert "k" in fake_redis.data

    @pytest.mark.asyncio
    async def test_invalidate_pattern_clears_both_tiers(self, cache, fake_redis):
        """Test glob invalidation removes matches from Redis and memory."""
        await cache.connect()
        await cache.set("quiz_1", 1)
        await cache.set("quiz_2", 2)
        await cache.set("user_1", 3)

        removed = await cache.invalidate_pattern("quiz_*")

        assert removed == 4  # two local + two remote
        assert await cache.get("quiz_1") is None
        assert await cache.get("user_1") == 3
        assert "quiz_1" not in fake_redis.data

    @pytest.mark.asyncio
    async def test_invalidate_related(self, cache):
        """Test related invalidation busts every entity prefix."""
        await cache.set("quiz_abc", 1)
        await cache.set("user_9", 2)
        await cache.set("dashboard_stats", 3)

        await cache.invalidate_related("abc")

        assert await cache.get("quiz_abc") is None
        assert await cache.get("user_9") is None
        assert await cache.get("dashboard_stats") == 3

    @pytest.mark.asyncio
    async def test_delete_and_exists(self, cache):
        await cache.connect()
        await cache.set("k", "v")
        assert await cache.exists("k") is True
        assert await cache.delete("k") is True
        assert await cache.exists("k") is False

    @pytest.mark.asyncio
    async def test_get_stats(self, cache):
        """Test stats report connectivity, local contents and counters."""
        await cache.connect()
        await cache.set("k", "v")
        await cache.get("k")
        await cache.get("absent")

        stats = await cache.get_stats()

        assert stats["remote"] == {"configured": True, "connected": True, "keys": 1}
        assert stats["local"]["keys"] == ["k"]
        assert stats["counters"]["hits"] == 1
        assert stats["counters"]["misses"] == 1
        assert stats["hit_ratio"] == 0.5

    @pytest.mark.asyncio
    async def test_memory_only_cache(self):
        """Test a cache without a remote tier."""
        cache = TwoTierCache()
        assert await cache.connect() is False
        await cache.set("k", {"a": 1})
        assert await cache.get("k") == {"a": 1}
        assert (await cache.get_stats())["remote"] == {"configured": False, "connected": False}


class TestRedisTier:
    """Test cases for RedisTier."""

    @pytest.mark.asyncio
    async def test_operations_before_connect_raise(self):
        tier = RedisTier(client=FakeRedis(FakeClock()))
        with pytest.raises(CacheTierError):
            await tier.get("k")

    @pytest.mark.asyncio
    async def test_transport_error_marks_disconnected(self):
        clock = FakeClock()
        fake = FakeRedis(clock)
        tier = RedisTier(client=fake, clock=clock)
        await tier.connect()

        fake.down = True
        with pytest.raises(CacheTierError):
            await tier.get("k")
        assert tier.connected is False
        assert tier.usable() is False

    @pytest.mark.asyncio
    async def test_set_without_ttl_uses_plain_set(self):
        clock = FakeClock()
        fake = FakeRedis(clock)
        tier = RedisTier(client=fake, clock=clock)
        await tier.connect()

        await tier.set("k", "v", 0)

        assert fake.calls[-1] == "set"
        assert fake.data["k"] == ("v", None)
