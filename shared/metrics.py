"""
Shared metrics configuration for the Quizblog API Gateway.
"""

from typing import Any, Dict, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)


class MetricsCollector:
    """Centralized Prometheus metrics for the gateway.

    Each collector owns its registry so several gateway instances (tests,
    embedded apps) never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type"],
            registry=self.registry
        )

        self._setup_gateway_metrics()

    def _setup_gateway_metrics(self):
        """Set up cache, upstream and realtime metrics."""
        self._metrics["cache_operations_total"] = Counter(
            "cache_operations_total",
            "Cache operations by tier and result",
            ["tier", "result"],
            registry=self.registry
        )

        self._metrics["upstream_requests_total"] = Counter(
            "upstream_requests_total",
            "Upstream calls by service and outcome",
            ["service", "outcome"],
            registry=self.registry
        )

        self._metrics["upstream_retries_total"] = Counter(
            "upstream_retries_total",
            "Upstream retry attempts",
            ["service"],
            registry=self.registry
        )

        self._metrics["realtime_connections"] = Gauge(
            "realtime_connections",
            "Number of open realtime connections",
            registry=self.registry
        )

        self._metrics["realtime_messages_total"] = Counter(
            "realtime_messages_total",
            "Realtime events by direction and name",
            ["direction", "event"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_error(self, error_type: str):
        """Record error metrics."""
        self._metrics["errors_total"].labels(error_type=error_type).inc()

    def record_cache(self, tier: str, result: str):
        self._metrics["cache_operations_total"].labels(tier=tier, result=result).inc()

    def record_upstream(self, service: str, outcome: str):
        self._metrics["upstream_requests_total"].labels(service=service, outcome=outcome).inc()

    def record_retry(self, service: str):
        self._metrics["upstream_retries_total"].labels(service=service).inc()

    def record_realtime_message(self, direction: str, event: str):
        self._metrics["realtime_messages_total"].labels(direction=direction, event=event).inc()

    def set_realtime_connections(self, count: int):
        self._metrics["realtime_connections"].set(count)

    def render_latest(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    content_type = CONTENT_TYPE_LATEST


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
