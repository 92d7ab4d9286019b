"""
Shared utilities for the What Went Wrong API.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator for transient failures
- base_service: FastAPI application scaffolding

Do not import from service packages into shared/.
"""
