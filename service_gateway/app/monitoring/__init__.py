"""
Health and metrics reporting for the gateway.
"""

from .health import DEGRADED, HEALTHY, UNHEALTHY, HealthReporter
from .request_metrics import RequestMetrics

__all__ = ["DEGRADED", "HEALTHY", "UNHEALTHY", "HealthReporter", "RequestMetrics"]
