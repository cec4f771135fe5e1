"""
Base service class for the product gateway services.
"""

import signal
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import BaseConfig
from shared.errors import GatewayError, InternalServerError, RouteNotFoundError
from shared.logging import configure_logging, get_logger
from shared.metrics import get_metrics_collector


HEALTH_METHODS = ["GET", "HEAD"]


def format_iso(value: datetime) -> str:
    """Format datetime values as ISO-8601 strings with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class GracefulServer(uvicorn.Server):
    """uvicorn server that drains on the first signal and aborts on a repeat."""

    def __init__(self, config: uvicorn.Config):
        super().__init__(config)
        self._exit_signal: Optional[int] = None
        self.logger = get_logger("server")

    def handle_exit(self, sig: int, frame) -> None:
        if self.should_exit and sig == self._exit_signal:
            self.logger.warning("Repeated shutdown signal, exiting immediately", signal=signal.Signals(sig).name)
            self.force_exit = True
            return
        self.logger.info("Shutdown signal received: closing HTTP server", signal=signal.Signals(sig).name)
        self._exit_signal = sig
        self.should_exit = True


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, config: BaseConfig):
        self.service_name = service_name
        self.config = config
        self.port = config.port

        configure_logging(service_name, config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.monotonic()

        self.app = self._create_app()
        self._setup_exception_handlers()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.on_startup()
            try:
                yield
            finally:
                await self.on_shutdown()
                self.logger.info("HTTP server closed")

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Product platform - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if not self.config.is_production else None,
            redoc_url=None,
            openapi_url="/openapi.json" if not self.config.is_production else None,
            lifespan=lifespan,
            # trailing-slash variants are routed explicitly, never redirected
            redirect_slashes=False,
        )

    async def on_startup(self) -> None:
        """Hook run before the first request. Override in subclasses."""

    async def on_shutdown(self) -> None:
        """Hook run after the last request drained. Override in subclasses."""

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.api_route("/health", methods=HEALTH_METHODS)
        @self.app.api_route("/health/", methods=HEALTH_METHODS, include_in_schema=False)
        async def health_check():
            """Liveness of this process; never contacts a dependency."""
            return {
                "status": "ok",
                "service": self.service_name,
                "timestamp": format_iso(datetime.now(timezone.utc)),
                "uptime": self._get_uptime(),
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import CONTENT_TYPE_LATEST
            return Response(
                content=self.metrics.export(),
                media_type=CONTENT_TYPE_LATEST
            )

    def _setup_exception_handlers(self):
        """Render every failure as a structured JSON body."""

        @self.app.exception_handler(GatewayError)
        async def gateway_exception_handler(request: Request, exc: GatewayError):
            response = exc.to_response(include_details=self.config.verbose_errors)
            return JSONResponse(status_code=exc.status_code, content=response.to_content())

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            if exc.status_code == 404:
                path = request.url.path
                if request.url.query:
                    path = f"{path}?{request.url.query}"
                content = RouteNotFoundError(path).to_response().to_content()
            else:
                content = {
                    "error": HTTPStatus(exc.status_code).phrase,
                    "message": str(exc.detail),
                }
            return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

        # added before any service middleware: innermost, so the 500 still
        # passes back out through the policy chain
        @self.app.middleware("http")
        async def catch_unhandled_errors(request: Request, call_next):
            try:
                return await call_next(request)
            except Exception as exc:
                return self._unhandled_error_response(request, exc)

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            return self._unhandled_error_response(request, exc)

    def _unhandled_error_response(self, request: Request, exc: Exception) -> JSONResponse:
        """Sanitized 500 for a fault no other handler claimed."""
        if self.config.verbose_errors:
            self.logger.error("Unhandled exception", error=str(exc), path=request.url.path, exc_info=True)
            error = InternalServerError(str(exc) or exc.__class__.__name__)
        else:
            self.logger.error("Unhandled exception", error_type=exc.__class__.__name__)
            error = InternalServerError()
        return JSONResponse(status_code=error.status_code, content=error.to_response().to_content())

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return round(time.monotonic() - self._start_time, 3)

    def run(self):
        """Run the service until a shutdown signal drains it."""
        server = GracefulServer(
            uvicorn.Config(
                self.app,
                host=self.config.host,
                port=self.config.port,
                log_level=self.config.log_level.lower(),
                timeout_graceful_shutdown=self.config.shutdown_grace_seconds,
                server_header=False,
            )
        )
        server.run()
