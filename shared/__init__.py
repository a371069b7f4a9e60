"""
Shared utilities for the Bulletin services.

This package aggregates common building blocks consumed by the service and
the client:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators for recoverable failures
- base_service: FastAPI application scaffolding

Any cross-package logic should live here to avoid import cycles. Do not
import from service_* or bulletin_client into shared/.
"""
