"""
Access logging and request metrics for the gateway.
"""

import re
import time
from datetime import datetime, timezone

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from shared.base_service import format_iso
from shared.logging import clear_context, get_logger, set_client_context, set_request_id
from shared.metrics import MetricsCollector
from service_gateway.app.domain.client_info import get_client_ip

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request on entry and on completion; never alters it."""

    def __init__(self, app, metrics: MetricsCollector, trust_forwarded_for: bool = False):
        super().__init__(app)
        self.metrics = metrics
        self.trust_forwarded_for = trust_forwarded_for
        self.logger = get_logger("gateway.access")

    async def dispatch(self, request: Request, call_next):
        incoming_id = request.headers.get(REQUEST_ID_HEADER)
        if incoming_id and not _REQUEST_ID_PATTERN.match(incoming_id):
            incoming_id = None
        request_id = set_request_id(incoming_id)

        client_ip = get_client_ip(request, self.trust_forwarded_for)
        set_client_context(client_ip)

        self.logger.info(
            "Request received",
            method=request.method,
            path=request.url.path,
            client_ip=client_ip,
            timestamp=format_iso(datetime.now(timezone.utc)),
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error_type=e.__class__.__name__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            clear_context()
            raise

        duration = time.perf_counter() - start_time
        self.metrics.record_http_request(
            method=request.method,
            endpoint=self._endpoint_label(request),
            status_code=response.status_code,
            duration=duration,
        )
        self.logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        clear_context()
        return response

    @staticmethod
    def _endpoint_label(request: Request) -> str:
        # route template, not the raw path, to bound label cardinality
        route = request.scope.get("route")
        return getattr(route, "path", "unmatched")
