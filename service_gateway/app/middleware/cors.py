"""
CORS policy for the gateway.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from starlette.datastructures import Headers
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

from shared.config import GatewayConfig


DEFAULT_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")
DEFAULT_HEADERS = ("Content-Type", "Authorization")


@dataclass(frozen=True)
class CorsPolicy:
    """Resolved CORS options.

    ``allow_all`` is the relaxed mode; ``GatewayConfig`` refuses it in
    production, so a production policy always uses the allowlist.
    """

    allow_all: bool
    origin_allowlist: Tuple[str, ...] = ()
    allowed_methods: Tuple[str, ...] = DEFAULT_METHODS
    allowed_headers: Tuple[str, ...] = DEFAULT_HEADERS

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "CorsPolicy":
        return cls(
            allow_all=config.cors_relaxed,
            origin_allowlist=tuple(config.cors_origin_list),
        )

    def middleware_options(self) -> Dict[str, Any]:
        """Keyword arguments for ``GatewayCORSMiddleware``."""
        return {
            "allow_origins": ["*"] if self.allow_all else list(self.origin_allowlist),
            "allow_methods": list(self.allowed_methods),
            "allow_headers": list(self.allowed_headers),
            "allow_credentials": False,
        }


class GatewayCORSMiddleware(CORSMiddleware):
    """Starlette CORS with header-only preflight rejections."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers=request_headers)
        if response.status_code < 400:
            return response

        headers = {
            name: value
            for name, value in response.headers.items()
            if name not in ("content-length", "content-type")
        }
        return Response(status_code=response.status_code, headers=headers)
