"""
Shared error handling for the Quizblog API Gateway.

Every error raised across the gateway maps onto an HTTP status and a JSON
body whose ``error`` field carries a human readable message.
"""

from typing import Dict, Any, Optional


class GatewayError(Exception):
    """Base exception for gateway errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> Dict[str, Any]:
        """Convert to the JSON error body."""
        body: Dict[str, Any] = {"error": self.message}
        body.update(self.details)
        return body


class ValidationError(GatewayError):
    """Missing or malformed request parameters."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)


class NotFoundError(GatewayError):
    """Primary resource of an endpoint is absent."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)


class RouteNotFoundError(NotFoundError):
    """No route or upstream prefix matches the request path."""

    def __init__(self, path: str):
        super().__init__(f"Route {path} not found")
        self.path = path


class UpstreamUnavailableError(GatewayError):
    """Upstream could not be reached within the retry budget."""

    status_code = 502

    def __init__(self, service_url: str, resource: str, attempts: int = 0):
        super().__init__(f"Service at {service_url} [{resource}] is unavailable")
        self.service_url = service_url
        self.resource = resource
        self.attempts = attempts


class UpstreamTimeoutError(GatewayError):
    """Upstream did not answer within the per-attempt timeout."""

    status_code = 504

    def __init__(self, service_url: str, resource: str):
        super().__init__(f"Service at {service_url} [{resource}] is taking too long to respond")
        self.service_url = service_url
        self.resource = resource


class UpstreamResponseError(GatewayError):
    """Upstream answered with an HTTP error status; propagated as-is."""

    def __init__(self, status_code: int, message: Optional[str], error_id: Optional[Any] = None):
        super().__init__(message or "Upstream request failed", status_code=status_code)
        self.error_id = error_id

    def to_response(self) -> Dict[str, Any]:
        return {"error": self.message, "id": self.error_id}


class AggregationError(GatewayError):
    """Unexpected failure while composing an aggregated response."""

    status_code = 500

    def __init__(self, message: str = "Aggregation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)


class ConnectionLimitError(GatewayError):
    """Realtime hub is at capacity."""

    status_code = 503

    def __init__(self, max_connections: int):
        super().__init__(f"Maximum connections ({max_connections}) exceeded")
        self.max_connections = max_connections


class UpstreamFetchError(GatewayError):
    """A single aggregation read failed (transport error, timeout or non-2xx)."""

    status_code = 502

    def __init__(self, service: str, path: str, message: str,
                 upstream_status: Optional[int] = None):
        super().__init__(f"{service} {path}: {message}")
        self.service = service
        self.path = path
        self.upstream_status = upstream_status
