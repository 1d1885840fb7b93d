"""
Shared utilities for the Quizblog API Gateway.

This package aggregates common building blocks consumed by the gateway:

- config: Gateway configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and JSON error bodies
- retry: Bounded retry policies and backoff schedules
- base_service: FastAPI application skeleton (middleware, error handlers)

Do not import from service_gateway into shared/.
"""
