"""
API Gateway service for the Quizblog platform.
"""

import json
from typing import Any, Awaitable, Optional, Tuple

from fastapi import Query, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from shared.base_service import BaseService
from shared.config import GatewayConfig
from shared.errors import AggregationError, ConnectionLimitError, GatewayError
from shared.logging import clear_context, set_connection_id
from service_gateway.app.adapters.upstream_client import UpstreamClient
from service_gateway.app.aggregation.service import AggregationService
from service_gateway.app.caching.local_cache import LocalCache
from service_gateway.app.caching.redis_tier import RedisTier
from service_gateway.app.caching.two_tier_cache import TwoTierCache
from service_gateway.app.monitoring.health import HealthReporter
from service_gateway.app.monitoring.request_metrics import RequestMetrics
from service_gateway.app.realtime.handlers import RealtimeEventHandler
from service_gateway.app.realtime.hub import RealtimeHub
from service_gateway.app.routing.upstream_router import PROXIED_METHODS, RouteTable, UpstreamRouter


class EmitRequest(BaseModel):
    """Server-originated realtime event pushed by an upstream service."""
    model_config = ConfigDict(populate_by_name=True)

    event: str
    room: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    data: Any = None


def _frame_text(message: dict) -> Optional[str]:
    """Text of a websocket receive message; binary frames must be UTF-8."""
    if message.get("text") is not None:
        return message["text"]
    data = message.get("bytes")
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(self, config: Optional[GatewayConfig] = None):
        super().__init__("gateway", config)
        targets = self.config.upstream_targets()

        self.cache = TwoTierCache(
            remote=RedisTier(
                self.config.redis_host,
                self.config.redis_port,
                self.config.redis_password,
                self.config.redis_db,
                timeout=self.config.redis_timeout_seconds,
                reconnect_interval=self.config.redis_reconnect_interval,
            ),
            local=LocalCache(max_size=self.config.local_cache_max_size),
            default_ttl=self.config.cache_default_ttl,
            metrics=self.metrics,
        )
        self.router = UpstreamRouter(
            RouteTable(targets),
            timeout=self.config.upstream_timeout_seconds,
            max_attempts=self.config.proxy_max_attempts,
            backoff_seconds=self.config.proxy_backoff_seconds,
            metrics=self.metrics,
        )
        self.upstream_client = UpstreamClient(
            targets,
            timeout=self.config.upstream_timeout_seconds,
            metrics=self.metrics,
        )
        self.aggregator = AggregationService(
            self.upstream_client,
            self.cache,
            default_ttl=self.config.cache_default_ttl,
        )
        self.hub = RealtimeHub(
            max_connections=self.config.max_ws_connections,
            rate_limit=self.config.realtime_rate_limit,
            metrics=self.metrics,
        )
        self.realtime_handler = RealtimeEventHandler(self.hub, metrics=self.metrics)
        self.health_reporter = HealthReporter(
            targets,
            self.cache,
            hub=self.hub,
            timeout=self.config.health_check_timeout,
        )
        self.request_metrics = RequestMetrics()

        @self.app.on_event("startup")
        async def _startup():
            await self.cache.connect()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.hub.close_all()
            await self.router.close()
            await self.upstream_client.close()
            await self.health_reporter.close()
            await self.cache.disconnect()

        self._setup_gateway_routes()
        self._setup_aggregation_routes()
        self._setup_realtime_routes()
        # Must be registered last: it claims every remaining /api path
        self._setup_proxy_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _on_request_complete(self, request: Request, status_code: int, duration: float) -> None:
        self.request_metrics.record(duration * 1000, is_error=status_code >= 400)

    async def _check_dependencies(self):
        return {"redis": "ok" if self.cache.remote_connected else "unavailable (using local cache)"}

    async def _aggregate(self, endpoint: str, call: Awaitable[Tuple[dict, bool]]) -> JSONResponse:
        """Run an aggregation handler and attach the cache provenance header."""
        try:
            document, cache_hit = await call
        except GatewayError:
            raise
        except Exception as e:
            self.logger.error("Aggregation handler failed", endpoint=endpoint, error=str(e), exc_info=e)
            raise AggregationError(f"Failed to aggregate {endpoint}: {e}") from e

        return JSONResponse(content=document, headers={"X-Cache": "HIT" if cache_hit else "MISS"})

    def _setup_gateway_routes(self):
        """Root, composite health and JSON metrics."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {"status": "API Gateway is running"}

        @self.app.get("/api/health")
        async def composite_health():
            """Upstream liveness, cache statistics and realtime statistics."""
            return await self.health_reporter.report()

        @self.app.get("/api/metrics")
        async def gateway_metrics():
            """Request summary, system metrics and recent alerts."""
            return self.request_metrics.snapshot()

    def _setup_aggregation_routes(self):
        """Composite read endpoints."""

        @self.app.get("/api/aggregated/quiz/{quiz_id}")
        async def aggregated_quiz(quiz_id: str):
            return await self._aggregate("quiz", self.aggregator.quiz_detail(quiz_id))

        @self.app.get("/api/aggregated/quizzes")
        async def aggregated_quizzes(
            page: Optional[int] = Query(None),
            limit: Optional[int] = Query(None),
            category: Optional[str] = Query(None),
            search: Optional[str] = Query(None),
            difficulty: Optional[str] = Query(None),
            created_by: Optional[str] = Query(None),
        ):
            return await self._aggregate("quizzes", self.aggregator.quiz_list(
                page=page,
                limit=limit,
                category=category,
                search=search,
                difficulty=difficulty,
                created_by=created_by,
            ))

        @self.app.get("/api/aggregated/dashboard")
        async def aggregated_dashboard():
            return await self._aggregate("dashboard", self.aggregator.dashboard())

        @self.app.get("/api/aggregated/user/{user_id}")
        async def aggregated_user(user_id: str):
            return await self._aggregate("user", self.aggregator.user_profile(user_id))

        @self.app.get("/api/aggregated/category/{category_id}")
        async def aggregated_category(category_id: str):
            return await self._aggregate("category", self.aggregator.category_detail(category_id))

        @self.app.get("/api/aggregated/search")
        async def aggregated_search(
            q: Optional[str] = Query(None),
            search_type: Optional[str] = Query(None, alias="type"),
            page: Optional[int] = Query(None),
            limit: Optional[int] = Query(None),
        ):
            return await self._aggregate("search", self.aggregator.search(
                q, search_type=search_type, page=page, limit=limit,
            ))

    def _setup_realtime_routes(self):
        """WebSocket channel plus the emit/stats HTTP surface."""

        @self.app.post("/api/realtime/emit")
        async def realtime_emit(payload: EmitRequest):
            """Let upstream services push an event to connected clients."""
            return await self.realtime_handler.emit(
                payload.event, payload.data, room=payload.room, user_id=payload.user_id,
            )

        @self.app.get("/api/realtime/stats")
        async def realtime_stats():
            return self.hub.get_stats()

        @self.app.get("/api/realtime/online")
        async def realtime_online():
            """Users with at least one live realtime connection."""
            users = self.hub.online_users()
            return {"users": users, "count": len(users)}

        @self.app.websocket("/ws")
        async def realtime_endpoint(websocket: WebSocket):
            """Realtime channel. Frames are ``{"event": ..., "data": ...}`` both ways."""
            origin = websocket.headers.get("origin")
            if self.config.env != "local" and origin and origin not in self.config.cors_origins():
                self.logger.warning("Realtime connection from disallowed origin", origin=origin)
                await websocket.close(code=1008)
                return

            await websocket.accept()
            try:
                connection = self.hub.add_connection(websocket)
            except ConnectionLimitError as e:
                await websocket.send_text(json.dumps({
                    "event": "connect_error",
                    "data": {"message": e.message}
                }))
                await websocket.close(code=1013)
                return

            connection_id = connection.connection_id
            set_connection_id(connection_id)
            await self.hub.send(connection_id, "connected", {"connectionId": connection_id})

            try:
                while True:
                    message = await websocket.receive()
                    if message["type"] == "websocket.disconnect":
                        self.logger.info("Realtime client disconnected", code=message.get("code"))
                        break

                    message_text = _frame_text(message)
                    if message_text is None:
                        self.logger.warning("Dropping undecodable realtime frame")
                        continue
                    try:
                        await self.realtime_handler.handle_message(connection_id, message_text)
                    except Exception as e:
                        self.logger.error("Realtime handler error", error=str(e), exc_info=e)
            finally:
                await self.realtime_handler.handle_disconnect(connection_id)
                clear_context()

    def _setup_proxy_routes(self):
        """Catch-all forwarding of /api/<resource> to the owning service."""

        @self.app.api_route(
            "/api/{path:path}",
            methods=PROXIED_METHODS,
        )
        async def proxy(request: Request, path: str):
            return await self.router.forward(request)


def create_app(config: Optional[GatewayConfig] = None):
    """Create FastAPI application."""
    service = GatewayService(config)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
