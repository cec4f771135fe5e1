"""
Shared utilities for the product gateway.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request and trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI app scaffolding, health, handlers and graceful shutdown

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service packages into shared/.
"""
