"""
API Gateway Service package for the Quizblog platform.

The gateway fronts client requests for the quiz/blog services:
- Routing: prefix-based forwarding with retry and timeout classification
- Aggregation: composite read endpoints with partial-failure tolerance
- Caching: Redis primary tier with an in-process fallback tier
- Realtime: WebSocket rooms and event fan-out
- Monitoring: upstream health checks and request metrics

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: HTTP client for aggregation reads.
- app.aggregation: Composite handlers and typed results.
- app.caching: Two-tier cache.
- app.routing: Route table and upstream router.
- app.realtime: Connection hub and event handlers.
- app.monitoring: Health reporter and request metrics.
"""
