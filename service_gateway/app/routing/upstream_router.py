"""
Upstream router: forwards /api/<resource> requests to the owning service.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.config import UpstreamTarget
from shared.errors import (
    GatewayError,
    RouteNotFoundError,
    UpstreamResponseError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryError, RetryPolicy, linear_backoff, retry_on_types


# Ordered (prefix, service) pairs; the first match wins.
ROUTE_TABLE: Tuple[Tuple[str, str], ...] = (
    ("/api/users", "users"),
    ("/api/subscribed-users", "users"),
    ("/api/categories", "quizzing"),
    ("/api/quizzes", "quizzing"),
    ("/api/questions", "quizzing"),
    ("/api/adverts", "posts"),
    ("/api/faqs", "posts"),
    ("/api/blog-posts", "posts"),
    ("/api/post-categories", "posts"),
    ("/api/image-uploads", "posts"),
    ("/api/blog-posts-views", "posts"),
    ("/api/schools", "schools"),
    ("/api/levels", "schools"),
    ("/api/faculties", "schools"),
    ("/api/course-categories", "courses"),
    ("/api/courses", "courses"),
    ("/api/chapters", "courses"),
    ("/api/notes", "courses"),
    ("/api/scores", "scores"),
    ("/api/downloads", "downloads"),
    ("/api/contacts", "contacts"),
    ("/api/broadcasts", "contacts"),
    ("/api/chat-rooms", "contacts"),
    ("/api/room-messages", "contacts"),
    ("/api/feedbacks", "feedbacks"),
    ("/api/quizzes-comments", "comments"),
    ("/api/questions-comments", "comments"),
    ("/api/comments", "comments"),
    ("/api/statistics", "statistics"),
)

# Connection refused / reset / aborted. Timeouts are classified separately.
TRANSIENT_ERRORS = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)

FORWARDED_HEADERS = ("x-auth-token", "x-internal-service", "content-type")

PROXIED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def raw_path(request: Request) -> str:
    """Request path exactly as the client sent it (percent-encoding kept)."""
    raw = request.scope.get("raw_path")
    if raw:
        # some servers leave the query string on raw_path
        return raw.decode("latin-1").split("?", 1)[0]
    return request.url.path


def resource_name(path: str) -> str:
    """Second path segment, e.g. ``quizzes`` for ``/api/quizzes/1``."""
    parts = path.split("/")
    return parts[2] if len(parts) > 2 else ""


class RouteTable:
    """Resolves request paths to upstream targets by prefix."""

    def __init__(self, targets: Dict[str, UpstreamTarget],
                 routes: Sequence[Tuple[str, str]] = ROUTE_TABLE):
        missing = {service for _, service in routes} - set(targets)
        if missing:
            raise ValueError(f"No upstream target configured for: {', '.join(sorted(missing))}")
        self.targets = targets
        self.routes: List[Tuple[str, str]] = list(routes)

    def resolve(self, path: str) -> Optional[UpstreamTarget]:
        for prefix, service in self.routes:
            # match on segment boundaries so /api/quizzes-comments is not /api/quizzes
            if path == prefix or path.startswith(prefix + "/"):
                return self.targets[service]
        return None

    def prefixes(self) -> List[str]:
        return [prefix for prefix, _ in self.routes]


class UpstreamRouter:
    """Forwards client requests verbatim to the owning upstream service.

    Transient transport failures are retried with a linear backoff; a timeout
    is reported at once as 504; exhausting the attempts yields 502. Upstream
    HTTP error statuses are propagated to the caller without retrying.
    """

    def __init__(
        self,
        table: RouteTable,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.table = table
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=max_attempts,
            backoff=linear_backoff(backoff_seconds),
            retry_on=retry_on_types(*TRANSIENT_ERRORS),
            name="upstream_router",
        )
        self.metrics = metrics
        self.logger = get_logger("gateway.router")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def forward(self, request: Request) -> Response:
        """Proxy ``request`` and translate the outcome into a response."""
        path = request.url.path
        target = self.table.resolve(path)
        if target is None:
            raise RouteNotFoundError(path)

        resource = resource_name(path)
        url = f"{target.base_url}{raw_path(request)}"
        if request.url.query:
            url = f"{url}?{request.url.query}"

        headers = {
            name: request.headers[name]
            for name in FORWARDED_HEADERS
            if name in request.headers
        }
        body = await request.body()

        async def _send() -> httpx.Response:
            # httpx limits each phase separately; bound the whole attempt as well
            try:
                return await asyncio.wait_for(
                    self.client.request(
                        request.method,
                        url,
                        content=body or None,
                        headers=headers,
                        timeout=self.timeout,
                    ),
                    self.timeout,
                )
            except asyncio.TimeoutError as exc:
                raise httpx.TimeoutException(f"No complete response within {self.timeout}s") from exc

        def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            self.logger.info(
                "Retrying upstream request",
                service=target.name,
                url=url,
                attempt=attempt,
                delay=delay,
                error=type(exc).__name__,
            )
            if self.metrics:
                self.metrics.record_retry(target.name)

        try:
            upstream = await self.retry_policy.execute(_send, on_retry=_on_retry)
        except httpx.TimeoutException as exc:
            self._record(target.name, "timeout")
            raise UpstreamTimeoutError(target.base_url, resource) from exc
        except RetryError as exc:
            self._record(target.name, "unavailable")
            raise UpstreamUnavailableError(target.base_url, resource, exc.attempts) from exc
        except httpx.HTTPError as exc:
            self._record(target.name, "error")
            self.logger.error("Upstream request failed", service=target.name, url=url, error=str(exc))
            raise GatewayError(f"Something went wrong: {resource}") from exc

        if upstream.status_code >= 400:
            self._record(target.name, "http_error")
            payload = _json_or_none(upstream)
            message, error_id = _error_fields(payload, upstream)
            raise UpstreamResponseError(upstream.status_code, message, error_id)

        self._record(target.name, "ok")
        if not upstream.content:
            return Response(status_code=upstream.status_code)
        payload = _json_or_none(upstream)
        if payload is None:
            return Response(
                content=upstream.content,
                status_code=upstream.status_code,
                media_type=upstream.headers.get("content-type"),
            )
        return JSONResponse(status_code=upstream.status_code, content=payload)

    def _record(self, service: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_upstream(service, outcome)


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _error_fields(payload: Any, response: httpx.Response) -> Tuple[Optional[str], Any]:
    if isinstance(payload, dict):
        message = payload.get("msg") or payload.get("error") or payload.get("message")
        return message, payload.get("id")
    return response.text or response.reason_phrase, None
