"""
Client identity helpers shared by logging, rate limiting and forwarding.
"""

from starlette.requests import Request


def get_client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    """Extract the caller IP, honouring proxy headers only when trusted."""
    if trust_forwarded_for:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"
