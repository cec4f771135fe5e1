"""
Proxy forwarder: relays requests under the proxy route to the upstream.
"""

from typing import Dict

from fastapi import Request, Response

from shared.errors import PayloadTooLargeError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from service_gateway.app.domain.client_info import get_client_ip
from service_gateway.app.proxy.translator import FailureTranslator
from service_gateway.app.proxy.upstream_client import UpstreamClient, UpstreamFailure


PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


class ProxyForwarder:
    """Forwards one request and relays the upstream answer verbatim."""

    def __init__(
        self,
        client: UpstreamClient,
        translator: FailureTranslator,
        metrics: MetricsCollector,
        max_request_body_bytes: int = 10 * 1024 * 1024,
        trust_forwarded_for: bool = False,
    ):
        self.client = client
        self.translator = translator
        self.metrics = metrics
        self.max_request_body_bytes = max_request_body_bytes
        self.trust_forwarded_for = trust_forwarded_for
        self.logger = get_logger("gateway.proxy")

    async def forward(self, request: Request) -> Response:
        """Forward ``request`` upstream.

        Raises a ``GatewayError`` for oversized bodies and for upstream
        calls that produced no response; any upstream status is relayed.
        """
        path = self._raw_path(request)
        body = await self.read_body(request)

        self.logger.info("Proxying request", method=request.method, path=path)
        result = await self.client.request(
            request.method,
            path,
            query=request.url.query,
            headers=self.build_headers(request),
            content=body or None,
        )

        if isinstance(result, UpstreamFailure):
            self.metrics.record_upstream_failure(request.method, result.kind.value, result.duration_ms / 1000)
            raise self.translator.translate(result, method=request.method, path=path)

        self.metrics.record_upstream_response(request.method, result.status_code, result.duration_ms / 1000)
        self.logger.info(
            "Proxied response",
            method=request.method,
            path=path,
            status_code=result.status_code,
            duration_ms=result.duration_ms,
        )
        return Response(
            content=result.content,
            status_code=result.status_code,
            headers=result.headers,
        )

    async def read_body(self, request: Request) -> bytes:
        """Read the inbound body, rejecting it as soon as it passes the bound."""
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.max_request_body_bytes:
            raise PayloadTooLargeError()

        body = bytearray()
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > self.max_request_body_bytes:
                raise PayloadTooLargeError()
        return bytes(body)

    def build_headers(self, request: Request) -> Dict[str, str]:
        """Headers sent upstream: content type plus client context."""
        headers = {
            "Content-Type": request.headers.get("content-type", "application/json"),
            "X-Forwarded-For": get_client_ip(request, self.trust_forwarded_for),
            "X-Forwarded-Proto": request.url.scheme,
        }
        if request.url.hostname:
            headers["X-Forwarded-Host"] = request.url.hostname
        return headers

    @staticmethod
    def _raw_path(request: Request) -> str:
        raw_path = request.scope.get("raw_path")
        if raw_path:
            return raw_path.split(b"?", 1)[0].decode("latin-1")
        return request.url.path
