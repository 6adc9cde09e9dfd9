"""
Shared utilities for the product catalog services.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace and request correlation
- metrics: Prometheus metrics collector owned by each service instance
- tracing: OpenTelemetry tracing config
- errors: Canonical error types and responses
- base_service: FastAPI scaffold wiring the above together

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
