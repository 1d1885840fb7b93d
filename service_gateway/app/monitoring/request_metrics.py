"""
In-process request statistics, system metrics and threshold alerts.
"""

import os
import platform
import resource
import sys
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Tuple

from shared.logging import get_logger


SUMMARY_WINDOW_SECONDS = 3600


class RequestMetrics:
    """Rolling request samples for the JSON metrics endpoint.

    Prometheus covers long-term metrics; this keeps the last hour in memory
    so the gateway can answer with a self-contained summary and alerts.
    """

    def __init__(
        self,
        max_samples: int = 1000,
        max_alerts: int = 100,
        response_time_threshold_ms: float = 5000,
        error_rate_threshold: float = 0.1,
        clock: Callable[[], float] = time.time,
    ):
        self.response_time_threshold_ms = response_time_threshold_ms
        self.error_rate_threshold = error_rate_threshold
        self._clock = clock
        self._started = clock()
        self.logger = get_logger("gateway.monitoring.requests")

        self.requests = 0
        self.errors = 0
        # (timestamp, duration_ms)
        self._samples: Deque[Tuple[float, float]] = deque(maxlen=max_samples)
        self.alerts: Deque[Dict[str, Any]] = deque(maxlen=max_alerts)

    def record(self, duration_ms: float, is_error: bool = False) -> List[Dict[str, Any]]:
        """Record one finished request and return any alerts it raised."""
        self.requests += 1
        if is_error:
            self.errors += 1
        self._samples.append((self._clock(), duration_ms))
        return self.check_thresholds()

    def summary(self) -> Dict[str, Any]:
        cutoff = self._clock() - SUMMARY_WINDOW_SECONDS
        recent = [duration for timestamp, duration in self._samples if timestamp > cutoff]
        average = sum(recent) / len(recent) if recent else 0
        return {
            "totalRequests": self.requests,
            "totalErrors": self.errors,
            "errorRate": self.errors / self.requests if self.requests else 0,
            "averageResponseTime": round(average),
            "period": "last 1 hour",
        }

    def check_thresholds(self) -> List[Dict[str, Any]]:
        summary = self.summary()
        now = self._clock()
        raised = []

        if summary["averageResponseTime"] > self.response_time_threshold_ms:
            raised.append({
                "type": "warning",
                "message": f"High response time: {summary['averageResponseTime']}ms",
                "threshold": self.response_time_threshold_ms,
                "timestamp": now,
            })
        if summary["errorRate"] > self.error_rate_threshold:
            raised.append({
                "type": "critical",
                "message": f"High error rate: {summary['errorRate'] * 100:.2f}%",
                "threshold": self.error_rate_threshold * 100,
                "timestamp": now,
            })

        for alert in raised:
            self.logger.warning("Metrics threshold exceeded", alert_type=alert["type"], message=alert["message"])
        self.alerts.extend(raised)
        return raised

    def system_metrics(self) -> Dict[str, Any]:
        usage = resource.getrusage(resource.RUSAGE_SELF)
        try:
            load_average = list(os.getloadavg())
        except OSError:
            load_average = []
        return {
            "cpu": {
                "user": usage.ru_utime,
                "system": usage.ru_stime,
                "loadAverage": load_average,
                "cores": os.cpu_count(),
            },
            "memory": {
                # ru_maxrss is kilobytes on Linux, bytes on macOS
                "maxRss": usage.ru_maxrss if sys.platform == "darwin" else usage.ru_maxrss * 1024,
            },
            "uptime": {"process": round(self._clock() - self._started, 3)},
            "platform": {
                "system": platform.system(),
                "release": platform.release(),
                "machine": platform.machine(),
                "python": platform.python_version(),
            },
        }

    def snapshot(self) -> Dict[str, Any]:
        return {
            "requests": self.summary(),
            "system": self.system_metrics(),
            "alerts": list(self.alerts)[-10:],
        }
