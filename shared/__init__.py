"""
Shared utilities for the service search stack.

This package aggregates common building blocks consumed by services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helper with exponential backoff
- circuit_breaker: Resilient external call protection
- base_service: FastAPI application scaffold

Do not import from service packages into shared/.
"""
