"""
Backend health reporting through the gateway.
"""

from typing import Any, Dict, Tuple

from shared.logging import get_logger
from service_gateway.app.proxy.translator import FailureTranslator
from service_gateway.app.proxy.upstream_client import UpstreamClient, UpstreamFailure

BACKEND_HEALTH_PATH = "/api/health"


class BackendHealthChecker:
    """Asks the upstream health endpoint with a short timeout.

    The gateway itself is always reported ``ok``; only the ``backend`` part
    reflects the upstream.
    """

    def __init__(self, client: UpstreamClient, translator: FailureTranslator, timeout: float = 5.0):
        self.client = client
        self.translator = translator
        self.timeout = timeout
        self.logger = get_logger("gateway.backend_health")

    async def check(self) -> Tuple[int, Dict[str, Any]]:
        """Return (status code, body) for the proxied health endpoint."""
        result = await self.client.request("GET", BACKEND_HEALTH_PATH, timeout=self.timeout)

        if isinstance(result, UpstreamFailure):
            error = self.translator.reason(result)
        elif not result.ok:
            error = f"Request failed with status code {result.status_code}"
        else:
            return 200, {"gateway": "ok", "backend": result.payload}

        self.logger.warning("Backend health check failed", error=error)
        return 503, {"gateway": "ok", "backend": "unavailable", "error": error}
