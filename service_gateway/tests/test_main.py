"""
Tests for Gateway routing, proxying and failure translation.
"""

import asyncio
import signal
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import uvicorn
from fastapi import FastAPI
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.base_service import GracefulServer, format_iso
from service_gateway.app.main import GatewayService
from service_gateway.tests.conftest import make_config


class TestHealthEndpoints:
    """Test cases for the liveness and backend health endpoints."""

    def test_gateway_health(self, client, backend):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "gateway"
        assert data["timestamp"].endswith("Z")
        assert isinstance(data["uptime"], float)
        assert backend.requests == []

    def test_uptime_non_decreasing(self, client):
        first = client.get("/health").json()["uptime"]
        second = client.get("/health").json()["uptime"]

        assert second >= first

    def test_health_ignores_backend_outage(self, client, backend):
        backend.error = httpx.ConnectError("Connection refused")

        assert client.get("/health").status_code == 200

    def test_backend_health_ok(self, client, backend):
        backend.json = {"status": "ok", "service": "backend"}

        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {
            "gateway": "ok",
            "backend": {"status": "ok", "service": "backend"},
        }
        assert backend.requests[0].method == "GET"
        assert backend.requests[0].url.path == "/api/health"

    def test_backend_health_is_stable(self, client, backend):
        backend.json = {"status": "ok"}

        assert client.get("/api/health").json() == client.get("/api/health").json()

    def test_backend_health_unreachable(self, client, backend):
        backend.error = httpx.ConnectError("[Errno 111] Connection refused")

        response = client.get("/api/health")

        assert response.status_code == 503
        assert response.json() == {
            "gateway": "ok",
            "backend": "unavailable",
            "error": "[Errno 111] Connection refused",
        }

    def test_backend_health_sanitized_in_production(self, build_gateway, backend):
        backend.error = httpx.ConnectError("[Errno 111] Connection refused to 10.0.0.5")
        _, client = build_gateway(backend, env="production")

        response = client.get("/api/health")

        assert response.status_code == 503
        assert response.json()["error"] == "Connection refused"

    def test_backend_health_error_status(self, client, backend):
        backend.status_code = 500
        backend.json = {"error": "db down"}

        response = client.get("/api/health")

        assert response.status_code == 503
        assert response.json() == {
            "gateway": "ok",
            "backend": "unavailable",
            "error": "Request failed with status code 500",
        }

    def test_backend_health_times_out(self, build_gateway):
        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={"status": "ok"})

        _, client = build_gateway(slow, health_check_timeout_seconds=0.05)

        start = time.monotonic()
        response = client.get("/api/health")

        assert response.status_code == 503
        assert time.monotonic() - start < 2

    def test_post_to_backend_health_is_proxied(self, client, backend):
        response = client.post("/api/health", json={})

        assert response.status_code == 200
        assert backend.requests[0].method == "POST"


class TestRouting:
    """Test cases for route dispatch outside the proxy."""

    def test_unknown_path_returns_structured_404(self, client, backend):
        response = client.get("/nope?x=1")

        assert response.status_code == 404
        assert response.json() == {
            "error": "Not Found",
            "message": "The requested endpoint does not exist",
            "path": "/nope?x=1",
        }
        assert backend.requests == []

    def test_api_without_trailing_segment_is_not_proxied(self, client, backend):
        response = client.get("/api")

        assert response.status_code == 404
        assert backend.requests == []

    def test_wrong_method_on_exact_route(self, client):
        response = client.post("/health")

        assert response.status_code == 405
        assert response.json()["error"] == "Method Not Allowed"
        assert "GET" in response.headers["allow"]

    def test_metrics_endpoint(self, client, backend):
        client.get("/api/products")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "upstream_requests_total" in response.text
        assert "http_requests_total" in response.text

    def test_unhandled_exception_is_verbose_in_development(self, build_gateway, backend):
        service, client = build_gateway(backend)

        with patch.object(service.forwarder, "forward", new_callable=AsyncMock) as mock_forward:
            mock_forward.side_effect = RuntimeError("boom")
            response = client.get("/api/products")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal Server Error", "message": "boom"}
        assert client.get("/health").status_code == 200

    def test_unhandled_exception_is_generic_in_production(self, build_gateway, backend):
        service, client = build_gateway(backend, env="production")

        with patch.object(service.forwarder, "forward", new_callable=AsyncMock) as mock_forward:
            mock_forward.side_effect = RuntimeError("secret connection string")
            response = client.get("/api/products")

        assert response.status_code == 500
        assert response.json() == {
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
        }

    def test_unhandled_exception_passes_through_policy_chain(self, build_gateway, backend):
        """The 500 carries the same headers as every other response."""
        service, client = build_gateway(backend, env="production")

        with patch.object(service.forwarder, "forward", new_callable=AsyncMock) as mock_forward:
            mock_forward.side_effect = RuntimeError("boom")
            response = client.get(
                "/api/products",
                headers={"Origin": "http://localhost:5921", "X-Request-ID": "req-500"},
            )

        assert response.status_code == 500
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "SAMEORIGIN"
        assert response.headers["x-request-id"] == "req-500"
        assert response.headers["access-control-allow-origin"] == "http://localhost:5921"
        assert response.headers["ratelimit-limit"] == "100"

    def test_head_on_health_routes_is_answered_locally(self, client, backend):
        backend.json = {"status": "ok"}

        liveness = client.head("/health")
        backend_health = client.head("/api/health")

        assert liveness.status_code == 200
        assert backend_health.status_code == 200
        assert [request.method for request in backend.requests] == ["GET"]
        assert backend.requests[0].url.path == "/api/health"

    def test_trailing_slash_on_health_routes(self, client, backend):
        backend.json = {"status": "ok"}

        liveness = client.get("/health/")
        backend_health = client.get("/api/health/")

        assert liveness.status_code == 200
        assert liveness.json()["status"] == "ok"
        assert backend_health.status_code == 200
        assert backend_health.json() == {"gateway": "ok", "backend": {"status": "ok"}}
        assert [request.url.path for request in backend.requests] == ["/api/health"]

    def test_trailing_slash_is_never_redirected(self, client, backend):
        unknown = client.get("/nope/", follow_redirects=False)
        proxied = client.get("/api/products/", follow_redirects=False)

        assert unknown.status_code == 404
        assert unknown.json()["path"] == "/nope/"
        assert proxied.status_code == 200
        assert backend.requests[0].url.path == "/api/products/"


class TestProxy:
    """Test cases for transparent forwarding under /api."""

    def test_relays_status_and_body(self, client, backend):
        backend.status_code = 201
        backend.json = {"id": "p1", "name": "Widget"}

        response = client.post("/api/products", json={"name": "Widget", "price": 9.5})

        assert response.status_code == 201
        assert response.json() == {"id": "p1", "name": "Widget"}
        assert response.headers["content-type"] == "application/json"

    def test_preserves_method_path_query_and_body(self, client, backend):
        client.patch(
            "/api/products/abc?tag=a&tag=b",
            content=b'{"price": 3}',
            headers={"Content-Type": "application/json"},
        )

        forwarded = backend.requests[0]
        assert forwarded.method == "PATCH"
        assert str(forwarded.url) == "http://backend.test:3847/api/products/abc?tag=a&tag=b"
        assert forwarded.content == b'{"price": 3}'

    @pytest.mark.parametrize("method", ["GET", "POST", "PUT", "DELETE", "HEAD", "OPTIONS"])
    def test_all_methods_are_forwarded(self, client, backend, method):
        client.request(method, "/api/products/p1")

        assert backend.requests[0].method == method

    def test_sets_forwarding_headers(self, client, backend):
        client.get("/api/products", headers={"X-Internal-Token": "abc"})

        headers = backend.requests[0].headers
        assert headers["x-forwarded-for"] == "testclient"
        assert headers["x-forwarded-proto"] == "http"
        assert headers["x-forwarded-host"] == "testserver"
        assert headers["content-type"] == "application/json"
        assert "x-internal-token" not in headers

    def test_keeps_client_content_type(self, client, backend):
        client.post("/api/products", content=b"name=Widget", headers={"Content-Type": "text/plain"})

        assert backend.requests[0].headers["content-type"] == "text/plain"

    def test_relays_upstream_errors_verbatim(self, client, backend):
        backend.status_code = 404
        backend.json = {"error": "Product not found"}

        response = client.get("/api/products/missing")

        assert response.status_code == 404
        assert response.json() == {"error": "Product not found"}

    def test_relays_only_content_headers(self, client, backend):
        backend.headers = {"X-Backend-Node": "node-7", "Set-Cookie": "sid=1"}

        response = client.get("/api/products")

        assert "x-backend-node" not in response.headers
        assert "set-cookie" not in response.headers
        assert response.headers["content-length"] == str(len(response.content))

    def test_oversized_request_body_is_rejected(self, build_gateway, backend):
        _, client = build_gateway(backend, max_request_body_bytes=16)

        response = client.post("/api/products", content=b"x" * 64)

        assert response.status_code == 413
        assert response.json()["error"] == "Payload Too Large"
        assert backend.requests == []

    def test_oversized_upstream_body_is_bad_gateway(self, build_gateway, backend):
        backend.json = {"items": ["x" * 64]}
        _, client = build_gateway(backend, max_upstream_response_bytes=16)

        response = client.get("/api/products")

        assert response.status_code == 502


class TestFailureTranslation:
    """Test cases for upstream failures surfaced to clients."""

    def test_connection_refused_is_503(self, client, backend):
        backend.error = httpx.ConnectError("[Errno 111] Connection refused")

        response = client.get("/api/products")

        assert response.status_code == 503
        data = response.json()
        assert data["error"] == "Backend service unavailable"
        assert data["message"] == "The backend service is currently unavailable. Please try again later."
        assert data["details"]["code"] == "ConnectError"
        assert data["details"]["target"] == "http://backend.test:3847/api/products"

    def test_production_hides_details(self, build_gateway, backend):
        backend.error = httpx.ConnectError("[Errno 111] Connection refused")
        _, client = build_gateway(backend, env="production")

        response = client.get("/api/products")

        assert response.status_code == 503
        assert set(response.json()) == {"error", "message"}

    def test_timeout_is_504(self, client, backend):
        backend.error = httpx.ReadTimeout("timed out")

        response = client.get("/api/products")

        assert response.status_code == 504
        assert response.json()["error"] == "Backend service timeout"

    def test_slow_upstream_is_504_within_bound(self, build_gateway):
        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        _, client = build_gateway(slow, upstream_timeout_seconds=0.05)

        start = time.monotonic()
        response = client.get("/api/products")

        assert response.status_code == 504
        assert time.monotonic() - start < 2

    def test_other_transport_failure_is_502(self, client, backend):
        backend.error = httpx.RemoteProtocolError("Server disconnected without sending a response.")

        response = client.get("/api/products")

        assert response.status_code == 502
        assert response.json()["error"] == "Bad Gateway"
        assert response.json()["message"] == "An error occurred while processing your request."

    def test_failures_are_not_retried(self, client, backend):
        backend.error = httpx.ConnectError("Connection refused")

        client.post("/api/products", json={"name": "Widget"})

        assert len(backend.requests) == 1


class TestLifecycle:
    """Test cases for startup, shutdown and signal handling."""

    def test_shutdown_closes_upstream_client(self, backend):
        service = GatewayService(make_config(), upstream_transport=httpx.MockTransport(backend))
        with TestClient(service.app) as client:
            client.get("/api/products")
            assert service.upstream_client._client is not None

        assert service.upstream_client._client is None

    def test_first_signal_drains_second_forces_exit(self):
        server = GracefulServer(uvicorn.Config(FastAPI()))

        server.handle_exit(signal.SIGTERM, None)
        assert server.should_exit is True
        assert server.force_exit is False

        server.handle_exit(signal.SIGINT, None)
        assert server.force_exit is False

        server.handle_exit(signal.SIGINT, None)
        assert server.force_exit is True

    def test_format_iso_uses_utc_millis(self):
        value = datetime(2024, 5, 1, 14, 30, 0, 123456, tzinfo=timezone(timedelta(hours=2)))

        assert format_iso(value) == "2024-05-01T12:30:00.123Z"
