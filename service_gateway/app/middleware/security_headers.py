"""
Hardening headers applied to every gateway response.
"""

from typing import Dict, Mapping, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


# Content-Security-Policy is left to the upstream; the gateway serves JSON only.
SECURITY_HEADERS: Dict[str, str] = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}

BANNER_HEADERS = ("x-powered-by", "server")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds the hardening set; leaves the request untouched."""

    def __init__(self, app, headers: Optional[Mapping[str, str]] = None):
        super().__init__(app)
        self.headers = dict(SECURITY_HEADERS if headers is None else headers)

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        for name in BANNER_HEADERS:
            if name in response.headers:
                del response.headers[name]
        return response
