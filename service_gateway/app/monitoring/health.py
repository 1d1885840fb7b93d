"""
Composite health report over upstream services, cache and realtime hub.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from shared.config import UpstreamTarget
from shared.logging import get_logger
from ..caching.two_tier_cache import TwoTierCache
from ..realtime.hub import RealtimeHub


HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


class HealthReporter:
    """Checks every upstream ``/health`` concurrently. Always live, never cached."""

    def __init__(
        self,
        targets: Dict[str, UpstreamTarget],
        cache: TwoTierCache,
        hub: Optional[RealtimeHub] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ):
        self.targets = targets
        self.cache = cache
        self.hub = hub
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._start_time = time.time()
        self.logger = get_logger("gateway.monitoring.health")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def check_service(self, target: UpstreamTarget) -> Dict[str, Any]:
        """Check one service: 200 is healthy, other codes below 500 degraded."""
        started = time.perf_counter()
        try:
            response = await self.client.get(f"{target.base_url}/health", timeout=self.timeout)
        except httpx.HTTPError as e:
            self.logger.warning("Service health check failed", service=target.name, error=str(e) or type(e).__name__)
            return {
                "status": UNHEALTHY,
                "url": target.base_url,
                "responseTime": round((time.perf_counter() - started) * 1000),
                "error": str(e) or type(e).__name__,
            }

        if response.status_code == 200:
            status = HEALTHY
        elif response.status_code < 500:
            status = DEGRADED
        else:
            status = UNHEALTHY
        return {
            "status": status,
            "url": target.base_url,
            "statusCode": response.status_code,
            "responseTime": round((time.perf_counter() - started) * 1000),
            "error": None,
        }

    async def report(self) -> Dict[str, Any]:
        names = list(self.targets)
        checks = await asyncio.gather(*(self.check_service(self.targets[name]) for name in names))
        services = dict(zip(names, checks))

        statuses = {check["status"] for check in checks}
        if UNHEALTHY in statuses:
            overall = UNHEALTHY
        elif DEGRADED in statuses:
            overall = DEGRADED
        else:
            overall = HEALTHY

        return {
            "status": overall,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.time() - self._start_time, 3),
            "services": services,
            "cache": await self.cache.get_stats(),
            "realtime": self.hub.get_stats() if self.hub else None,
        }
