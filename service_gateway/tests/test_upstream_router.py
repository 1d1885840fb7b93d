"""
Unit tests for prefix routing and resilient forwarding.
"""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import GatewayConfig, UpstreamTarget
from shared.retry import RetryPolicy, linear_backoff, retry_on_types
from service_gateway.app.main import GatewayService
from service_gateway.app.routing.upstream_router import (
    ROUTE_TABLE,
    TRANSIENT_ERRORS,
    RouteTable,
    UpstreamRouter,
    resource_name,
)


QUIZZING_URL = "http://quizzing.internal:5002"
SCORES_URL = "http://scores.internal:5006"


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def build_client(handler, sleep, timeout=10.0):
    """Gateway whose router talks to ``handler`` through a mock transport."""
    config = GatewayConfig(quizzing_service_url=QUIZZING_URL, scores_service_url=SCORES_URL)
    service = GatewayService(config)
    service.router = UpstreamRouter(
        RouteTable(config.upstream_targets()),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        timeout=timeout,
        retry_policy=RetryPolicy(
            max_attempts=3,
            backoff=linear_backoff(1.0),
            retry_on=retry_on_types(*TRANSIENT_ERRORS),
            sleep=sleep,
        ),
    )
    return TestClient(service.app)


class TestRouteTable:
    """Test cases for RouteTable."""

    @pytest.fixture
    def table(self):
        services = {service for _, service in ROUTE_TABLE}
        return RouteTable({name: UpstreamTarget(name, f"http://{name}") for name in services})

    def test_resolves_exact_and_nested_paths(self, table):
        assert table.resolve("/api/quizzes").name == "quizzing"
        assert table.resolve("/api/quizzes/abc123").name == "quizzing"
        assert table.resolve("/api/blog-posts-views/1").name == "posts"
        assert table.resolve("/api/chat-rooms/1/messages").name == "contacts"

    def test_prefix_match_respects_segment_boundary(self, table):
        """Test /api/quizzes does not claim /api/quizzes-comments."""
        assert table.resolve("/api/quizzes-comments/quiz/1").name == "comments"
        assert table.resolve("/api/quizzesx") is None

    def test_unmapped_prefix(self, table):
        assert table.resolve("/api/unknown") is None

    def test_missing_target_is_rejected(self):
        with pytest.raises(ValueError):
            RouteTable({"users": UpstreamTarget("users", "http://users")})


def test_resource_name():
    assert resource_name("/api/quizzes/1") == "quizzes"
    assert resource_name("/api") == ""


class TestUpstreamRouter:
    """Test cases for UpstreamRouter forwarding."""

    @pytest.fixture
    def sleep(self):
        return RecordingSleep()

    def test_retries_connection_refused_then_succeeds(self, sleep):
        """Test two refused connections then a 200 with 1s and 2s backoff."""
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ConnectError("Connection refused", request=request)
            return httpx.Response(200, json=[{"_id": "abc123"}])

        client = build_client(handler, sleep)
        response = client.get("/api/quizzes")

        assert response.status_code == 200
        assert response.json() == [{"_id": "abc123"}]
        assert len(attempts) == 3
        assert sleep.delays == [1.0, 2.0]

    def test_timeout_yields_504_without_backoff(self, sleep):
        """Test a timeout is reported at once and never retried."""
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        client = build_client(handler, sleep)
        response = client.get("/api/quizzes/abc123")

        assert response.status_code == 504
        assert response.json() == {
            "error": f"Service at {QUIZZING_URL} [quizzes] is taking too long to respond"
        }
        assert len(attempts) == 1
        assert sleep.delays == []

    def test_exhausted_retries_yield_502(self, sleep):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        client = build_client(handler, sleep)
        response = client.get("/api/scores")

        assert response.status_code == 502
        assert response.json() == {"error": f"Service at {SCORES_URL} [scores] is unavailable"}
        assert sleep.delays == [1.0, 2.0]

    def test_upstream_error_status_is_propagated(self, sleep):
        """Test upstream HTTP errors keep their status and {error, id} shape."""
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(404, json={"msg": "Quiz not found", "id": "abc123"})

        client = build_client(handler, sleep)
        response = client.get("/api/quizzes/abc123")

        assert response.status_code == 404
        assert response.json() == {"error": "Quiz not found", "id": "abc123"}
        assert len(attempts) == 1

    def test_forwards_method_query_body_and_auth_header(self, sleep):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["token"] = request.headers.get("x-auth-token")
            seen["internal"] = request.headers.get("x-internal-service")
            seen["body"] = request.content
            return httpx.Response(201, json={"_id": "s1"})

        client = build_client(handler, sleep)
        response = client.post(
            "/api/scores?quiz=abc123",
            content=b'{"score": 7}',
            headers={
                "content-type": "application/json",
                "x-auth-token": "token-1",
                "x-internal-service": "quizzing",
            },
        )

        assert response.status_code == 201
        assert seen == {
            "method": "POST",
            "url": f"{SCORES_URL}/api/scores?quiz=abc123",
            "token": "token-1",
            "internal": "quizzing",
            "body": b'{"score": 7}',
        }

    def test_non_json_body_passes_through(self, sleep):
        def handler(request):
            return httpx.Response(200, content=b"plain text", headers={"content-type": "text/plain"})

        client = build_client(handler, sleep)
        response = client.get("/api/downloads/report")

        assert response.status_code == 200
        assert response.text == "plain text"

    def test_unmapped_route_returns_404(self, sleep):
        client = build_client(lambda request: httpx.Response(200), sleep)
        response = client.get("/api/unknown/1")

        assert response.status_code == 404
        assert response.json() == {"error": "Route /api/unknown/1 not found"}

    def test_encoded_path_is_forwarded_unchanged(self, sleep):
        """Test %2F and %3F stay escaped instead of splitting the path or query."""
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"_id": "a/b?x"})

        client = build_client(handler, sleep)
        response = client.get("/api/quizzes/a%2Fb%3Fx?page=1")

        assert response.status_code == 200
        assert seen == [f"{QUIZZING_URL}/api/quizzes/a%2Fb%3Fx?page=1"]

    def test_head_and_options_are_forwarded(self, sleep):
        methods = []

        def handler(request):
            methods.append(request.method)
            return httpx.Response(204)

        client = build_client(handler, sleep)

        assert client.head("/api/quizzes").status_code == 204
        assert client.options("/api/quizzes").status_code == 204
        assert methods == ["HEAD", "OPTIONS"]

    def test_slow_upstream_is_bounded_per_attempt(self, sleep):
        """Test an attempt that never completes is cut off as a 504."""
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json=[])

        client = build_client(handler, sleep, timeout=0.05)
        response = client.get("/api/quizzes")

        assert response.status_code == 504
        assert sleep.delays == []
