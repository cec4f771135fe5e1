"""
Cross-cutting middleware for the Gateway.

Wired in ``app.main`` so that requests traverse, outermost first:
request logging, security headers, CORS, then rate limiting.
"""
