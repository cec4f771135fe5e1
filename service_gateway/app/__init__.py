"""
API Gateway Service package for the product platform.

The gateway fronts all client traffic to the product service, enforcing:
- Security headers and CORS policy on every response
- Per-client fixed-window rate limiting
- Transparent forwarding of /api/* with failure translation

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.middleware: request logging, security headers, CORS.
- app.ratelimit: fixed-window limiter, stores and middleware.
- app.proxy: upstream client, forwarder and failure translator.
- app.domain: client identity and backend health helpers.
"""
