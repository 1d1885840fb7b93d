"""
Unit tests for the health reporter and request metrics.
"""

import httpx
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import UpstreamTarget
from service_gateway.app.caching.two_tier_cache import TwoTierCache
from service_gateway.app.monitoring.health import HealthReporter
from service_gateway.app.monitoring.request_metrics import RequestMetrics
from service_gateway.app.realtime.hub import RealtimeHub


def reporter_for(statuses):
    """Reporter over targets answering ``/health`` with the given status (None = down)."""

    def handler(request):
        status = statuses[request.url.host]
        if status is None:
            raise httpx.ConnectError("Connection refused", request=request)
        return httpx.Response(status, json={"status": "ok"})

    targets = {name: UpstreamTarget(name, f"http://{name}") for name in statuses}
    return HealthReporter(
        targets,
        TwoTierCache(),
        hub=RealtimeHub(),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestHealthReporter:
    """Test cases for HealthReporter."""

    @pytest.mark.asyncio
    async def test_all_healthy(self):
        report = await reporter_for({"users": 200, "quizzing": 200}).report()

        assert report["status"] == "healthy"
        assert set(report["services"]) == {"users", "quizzing"}
        assert report["services"]["users"]["status"] == "healthy"
        assert report["cache"]["remote"]["connected"] is False
        assert report["realtime"]["active_connections"] == 0

    @pytest.mark.asyncio
    async def test_status_classification(self):
        """Test 200 healthy, other 4xx degraded, 5xx and transport errors unhealthy."""
        report = await reporter_for({"a": 200, "b": 404, "c": 503, "d": None}).report()

        services = report["services"]
        assert services["a"]["status"] == "healthy"
        assert services["b"]["status"] == "degraded"
        assert services["c"]["status"] == "unhealthy"
        assert services["d"]["status"] == "unhealthy"
        assert services["d"]["error"]
        assert report["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_degraded_overall(self):
        report = await reporter_for({"a": 200, "b": 401}).report()
        assert report["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_checks_health_path(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200)

        reporter = HealthReporter(
            {"users": UpstreamTarget("users", "http://users:5001")},
            TwoTierCache(),
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        report = await reporter.report()

        assert seen == ["http://users:5001/health"]
        assert report["realtime"] is None


class TestRequestMetrics:
    """Test cases for RequestMetrics."""

    @pytest.fixture
    def clock(self):
        class Clock:
            now = 10_000.0

            def __call__(self):
                return self.now
        return Clock()

    def test_summary(self, clock):
        metrics = RequestMetrics(clock=clock)
        metrics.record(100)
        metrics.record(300, is_error=True)

        summary = metrics.summary()

        assert summary["totalRequests"] == 2
        assert summary["totalErrors"] == 1
        assert summary["errorRate"] == 0.5
        assert summary["averageResponseTime"] == 200

    def test_old_samples_leave_the_average(self, clock):
        metrics = RequestMetrics(clock=clock)
        metrics.record(9000)
        clock.now += 3601
        metrics.record(100)

        assert metrics.summary()["averageResponseTime"] == 100

    def test_alerts(self, clock):
        metrics = RequestMetrics(clock=clock)

        raised = metrics.record(6000, is_error=True)

        assert {alert["type"] for alert in raised} == {"warning", "critical"}
        assert len(metrics.snapshot()["alerts"]) == 2

    def test_snapshot_has_system_metrics(self, clock):
        snapshot = RequestMetrics(clock=clock).snapshot()

        assert snapshot["requests"]["totalRequests"] == 0
        assert "loadAverage" in snapshot["system"]["cpu"]
        assert snapshot["system"]["memory"]["maxRss"] > 0
        assert snapshot["system"]["platform"]["system"]
