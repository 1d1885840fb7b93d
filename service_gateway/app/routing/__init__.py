"""
Prefix routing and resilient forwarding to upstream services.
"""

from .upstream_router import (
    PROXIED_METHODS,
    ROUTE_TABLE,
    TRANSIENT_ERRORS,
    RouteTable,
    UpstreamRouter,
    raw_path,
    resource_name,
)

__all__ = [
    "PROXIED_METHODS",
    "ROUTE_TABLE",
    "TRANSIENT_ERRORS",
    "RouteTable",
    "UpstreamRouter",
    "raw_path",
    "resource_name",
]
