"""
API Gateway service for the product platform.
"""

from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.base_service import HEALTH_METHODS, BaseService, format_iso
from shared.config import GatewayConfig, get_config
from service_gateway.app.domain.health import BackendHealthChecker
from service_gateway.app.middleware.cors import CorsPolicy, GatewayCORSMiddleware
from service_gateway.app.middleware.request_logging import RequestLoggingMiddleware
from service_gateway.app.middleware.security_headers import SecurityHeadersMiddleware
from service_gateway.app.proxy.forwarder import PROXY_METHODS, ProxyForwarder
from service_gateway.app.proxy.translator import FailureTranslator
from service_gateway.app.proxy.upstream_client import UpstreamClient
from service_gateway.app.ratelimit.fixed_window import (
    FixedWindowRateLimiter,
    RateLimitMiddleware,
    RateLimitPolicy,
    RateLimitStore,
    build_rate_limit_store,
)


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        *,
        rate_limit_store: Optional[RateLimitStore] = None,
        upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("gateway", config or get_config())

        self.upstream_client = UpstreamClient(
            self.config.backend_base_url,
            timeout=self.config.upstream_timeout_seconds,
            max_response_bytes=self.config.max_upstream_response_bytes,
            transport=upstream_transport,
        )
        self.translator = FailureTranslator(verbose=self.config.verbose_errors)
        self.forwarder = ProxyForwarder(
            self.upstream_client,
            self.translator,
            self.metrics,
            max_request_body_bytes=self.config.max_request_body_bytes,
            trust_forwarded_for=self.config.trust_forwarded_for,
        )
        self.backend_health = BackendHealthChecker(
            self.upstream_client,
            self.translator,
            timeout=self.config.health_check_timeout_seconds,
        )

        self.rate_limit_policy = RateLimitPolicy.from_config(self.config)
        self.rate_limit_store = rate_limit_store or build_rate_limit_store(self.config)
        self.rate_limiter = FixedWindowRateLimiter(self.rate_limit_policy, self.rate_limit_store)
        self.cors_policy = CorsPolicy.from_config(self.config)

        self._setup_gateway_middleware()
        self._setup_gateway_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    async def on_startup(self) -> None:
        self.logger.info(
            "Gateway service started",
            environment=self.config.env,
            gateway_port=self.config.port,
            backend_url=self.config.backend_base_url,
            rate_limit_profile=self.rate_limit_policy.name,
            cors_mode="relaxed" if self.cors_policy.allow_all else "strict",
            time=format_iso(datetime.now(timezone.utc)),
        )

    async def on_shutdown(self) -> None:
        await self.upstream_client.close()
        await self.rate_limit_store.close()

    def _setup_gateway_middleware(self):
        """Wire the policy chain; the last middleware added runs first."""
        self.app.add_middleware(
            RateLimitMiddleware,
            rate_limiter=self.rate_limiter,
            metrics=self.metrics,
            trust_forwarded_for=self.config.trust_forwarded_for,
        )
        self.app.add_middleware(GatewayCORSMiddleware, **self.cors_policy.middleware_options())
        self.app.add_middleware(SecurityHeadersMiddleware)
        self.app.add_middleware(
            RequestLoggingMiddleware,
            metrics=self.metrics,
            trust_forwarded_for=self.config.trust_forwarded_for,
        )

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes.

        Exact routes are registered before the wildcard so that they are never
        forwarded upstream.
        """

        @self.app.api_route("/api/health", methods=HEALTH_METHODS)
        @self.app.api_route("/api/health/", methods=HEALTH_METHODS, include_in_schema=False)
        async def backend_health():
            """Upstream health as seen from the gateway."""
            status_code, body = await self.backend_health.check()
            return JSONResponse(status_code=status_code, content=body)

        @self.app.api_route("/api/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
        async def proxy(path: str, request: Request):
            """Forward everything else under /api to the upstream."""
            return await self.forwarder.forward(request)


def create_app(config: Optional[GatewayConfig] = None, **kwargs) -> FastAPI:
    """Create FastAPI application."""
    service = GatewayService(config, **kwargs)
    return service.app


def main():
    service = GatewayService()
    service.run()


if __name__ == "__main__":
    main()
