"""
Rate limiting package for the Gateway.

Holds the fixed-window limiter, its counter stores and the middleware that
enforces per-client request budgets before anything is proxied.
"""
