"""
Remote (Redis) cache tier.
"""

import time
from typing import Callable, List, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.logging import get_logger


class CacheTierError(Exception):
    """A cache tier could not serve the operation."""


_TRANSPORT_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisTier:
    """Redis-backed tier guarded by a connected flag.

    The tier is only used after ``connect()`` has been called once. After a
    transport error it stays disconnected and every operation raises
    ``CacheTierError`` until a reconnect attempt succeeds; attempts run at most
    once per ``reconnect_interval`` seconds.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        password: Optional[str] = None,
        db: int = 0,
        *,
        timeout: float = 2.0,
        reconnect_interval: float = 30.0,
        client: Optional[redis.Redis] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.host = host
        self.port = port
        self.password = password
        self.db = db
        self.timeout = timeout
        self.reconnect_interval = reconnect_interval
        self.logger = get_logger("gateway.cache.redis")

        self._client = client
        self._clock = clock
        self._last_connect_attempt: Optional[float] = None
        self.connected = False

    def _create_client(self) -> redis.Redis:
        return redis.Redis(
            host=self.host,
            port=self.port,
            password=self.password,
            db=self.db,
            socket_connect_timeout=self.timeout,
            socket_timeout=self.timeout,
            decode_responses=True,
        )

    async def connect(self) -> bool:
        """Create the client if needed and verify it answers."""
        self._last_connect_attempt = self._clock()
        try:
            if self._client is None:
                self._client = self._create_client()
            await self._client.ping()
        except (RedisError, OSError) as exc:
            self.logger.info("Using local cache (Redis unavailable)", error=str(exc))
            self.connected = False
            return False

        if not self.connected:
            self.logger.info("Redis connected", host=self.host, port=self.port, db=self.db)
        self.connected = True
        return True

    async def disconnect(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except (RedisError, OSError) as exc:  # pragma: no cover - close is best effort
                self.logger.debug("Redis close failed", error=str(exc))
        self.connected = False

    def usable(self) -> bool:
        """Connected, or disconnected long enough that a reconnect attempt is due."""
        if self.connected:
            return True
        if self._last_connect_attempt is None:
            return False
        return self._clock() - self._last_connect_attempt >= self.reconnect_interval

    async def _ensure_available(self) -> redis.Redis:
        if not self.connected:
            if self._last_connect_attempt is None:
                raise CacheTierError("Redis tier not started")
            if self._clock() - self._last_connect_attempt < self.reconnect_interval:
                raise CacheTierError("Redis tier disconnected")
            if not await self.connect():
                raise CacheTierError("Redis reconnect failed")
        return self._client

    def _mark_disconnected(self, operation: str, exc: BaseException) -> None:
        if self.connected:
            self.logger.warning("Redis tier disconnected", operation=operation, error=str(exc))
        self.connected = False
        self._last_connect_attempt = self._clock()

    async def _run(self, operation: str, call):
        client = await self._ensure_available()
        try:
            return await call(client)
        except _TRANSPORT_ERRORS as exc:
            self._mark_disconnected(operation, exc)
            raise CacheTierError(f"Redis {operation} failed: {exc}") from exc
        except RedisError as exc:
            self.logger.error("Redis command error", operation=operation, error=str(exc))
            raise CacheTierError(f"Redis {operation} failed: {exc}") from exc

    async def get(self, key: str) -> Optional[str]:
        return await self._run("get", lambda client: client.get(key))

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            await self._run("setex", lambda client: client.setex(key, ttl_seconds, value))
        else:
            await self._run("set", lambda client: client.set(key, value))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._run("delete", lambda client: client.delete(*keys))

    async def exists(self, key: str) -> bool:
        return await self._run("exists", lambda client: client.exists(key)) == 1

    async def keys(self, pattern: str) -> List[str]:
        return list(await self._run("keys", lambda client: client.keys(pattern)))

    async def dbsize(self) -> int:
        return await self._run("dbsize", lambda client: client.dbsize())
