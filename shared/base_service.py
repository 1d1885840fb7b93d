"""
Base service class for the Quizblog API Gateway.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Dict, Optional
import time
import os

from shared.config import GatewayConfig, get_config
from shared.logging import configure_logging, get_logger, set_request_id, clear_context
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.errors import GatewayError


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, config: Optional[GatewayConfig] = None):
        self.service_name = service_name
        self.config = config or get_config()
        self.port = self.config.port

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics: MetricsCollector = get_metrics_collector(service_name)
        self._start_time = time.time()

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description="Quizblog API Gateway",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
        )

    def _setup_middleware(self):
        """Set up middleware."""

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else self.config.cors_origins(),
            allow_credentials=self.config.env != "local",
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def add_request_context(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            start_time = time.time()
            status_code = 500

            try:
                response = await call_next(request)
                status_code = response.status_code
                response.headers["X-Request-ID"] = request_id
                return response
            finally:
                duration = time.time() - start_time

                self.metrics.record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=status_code,
                    duration=duration
                )
                self._on_request_complete(request, status_code, duration)

                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    status_code=status_code,
                    duration_ms=round(duration * 1000, 2)
                )
                clear_context()

    def _on_request_complete(self, request: Request, status_code: int, duration: float) -> None:
        """Hook for subclasses that keep their own request statistics."""

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Liveness endpoint."""
            try:
                dependencies = await self._check_dependencies()
                return {
                    "service": self.service_name,
                    "status": "ok",
                    "uptime_seconds": self._get_uptime(),
                    "dependencies": dependencies,
                    "version": "1.0.0",
                    "commit": os.getenv("GIT_COMMIT", "unknown")
                }
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                return JSONResponse(
                    status_code=503,
                    content={
                        "service": self.service_name,
                        "status": "error",
                        "error": str(e)
                    }
                )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=self.metrics.render_latest(),
                media_type=self.metrics.content_type
            )

        @self.app.exception_handler(GatewayError)
        async def gateway_error_handler(request: Request, exc: GatewayError):
            level = self.logger.error if exc.status_code >= 500 else self.logger.warning
            level(
                "Gateway error",
                status_code=exc.status_code,
                message=exc.message,
                path=request.url.path
            )
            self.metrics.record_error(type(exc).__name__)
            return JSONResponse(status_code=exc.status_code, content=exc.to_response())

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            if exc.status_code == 404 and exc.detail == "Not Found":
                message = f"Route {request.url.path} not found"
            else:
                message = exc.detail
            return JSONResponse(
                status_code=exc.status_code,
                content={"error": message},
                headers=getattr(exc, "headers", None)
            )

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            errors = exc.errors()
            message = "; ".join(
                f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
                for error in errors
            ) or "Invalid request"
            return JSONResponse(status_code=400, content={"error": message})

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), path=request.url.path, exc_info=exc)
            self.metrics.record_error("unhandled")
            return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
