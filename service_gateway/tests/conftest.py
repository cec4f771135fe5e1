"""
Shared fixtures for Gateway tests.
"""

import os
import sys
from typing import List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import GatewayConfig
from service_gateway.app.main import GatewayService
from service_gateway.app.ratelimit.fixed_window import InMemoryRateLimitStore

BACKEND_URL = "http://backend.test:3847"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingBackend:
    """``httpx.MockTransport`` handler that records what the gateway forwards."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.json = {"ok": True}
        self.headers = {}
        self.error: Optional[Exception] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.json, headers=self.headers)


def make_config(**overrides) -> GatewayConfig:
    """Build a config isolated from any local .env file."""
    values = {"env": "development", "backend_url": BACKEND_URL}
    values.update(overrides)
    return GatewayConfig(_env_file=None, **values)


@pytest.fixture
def fake_clock():
    """Create a fake clock for the rate limiter."""
    return FakeClock()


@pytest.fixture
def backend():
    """Create a recording upstream."""
    return RecordingBackend()


@pytest.fixture
def build_gateway(fake_clock):
    """Factory returning (service, client) for a given upstream handler and config."""
    clients = []

    def _build(handler, **config_overrides):
        service = GatewayService(
            make_config(**config_overrides),
            rate_limit_store=InMemoryRateLimitStore(clock=fake_clock),
            upstream_transport=httpx.MockTransport(handler),
        )
        client = TestClient(service.app, raise_server_exceptions=False)
        client.__enter__()
        clients.append(client)
        return service, client

    yield _build

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(build_gateway, backend):
    """Development gateway in front of the recording upstream."""
    _, test_client = build_gateway(backend)
    return test_client
