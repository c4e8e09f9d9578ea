"""
Shared utilities for the tarification services.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- test_helpers: Factories for trees, tariffs and evaluation contexts

Any cross-service logic should live here to avoid import cycles across
service packages. Only test_helpers imports from service packages.
"""
