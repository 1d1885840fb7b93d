"""
Read-only HTTP client used by the aggregation handlers.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from shared.config import UpstreamTarget
from shared.errors import UpstreamFetchError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


class UpstreamClient:
    """GETs JSON documents from named upstream services.

    No retries here: aggregation treats a timeout or a failed call as a
    partial failure and moves on.
    """

    def __init__(
        self,
        targets: Dict[str, UpstreamTarget],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.targets = targets
        self.timeout = timeout
        self.metrics = metrics
        self._client = client
        self._owns_client = client is None
        self.logger = get_logger("gateway.upstream_client")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def get_json(self, service: str, path: str,
                       params: Optional[Dict[str, Any]] = None) -> Any:
        """Fetch ``path`` from ``service``; raises ``UpstreamFetchError`` on any failure."""
        target = self.targets.get(service)
        if target is None:
            raise UpstreamFetchError(service, path, "unknown service")

        url = f"{target.base_url}{path}"
        try:
            response = await asyncio.wait_for(
                self.client.get(url, params=params, timeout=self.timeout),
                self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            self._record(service, "timeout")
            raise UpstreamFetchError(service, path, "timed out") from exc
        except httpx.HTTPError as exc:
            self._record(service, "unavailable")
            raise UpstreamFetchError(service, path, str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            self._record(service, "http_error")
            raise UpstreamFetchError(
                service, path, f"status {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            self._record(service, "error")
            raise UpstreamFetchError(service, path, "invalid JSON body") from exc

        self._record(service, "ok")
        self.logger.debug("Upstream document fetched", service=service, url=url)
        return data

    def _record(self, service: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_upstream(service, outcome)
