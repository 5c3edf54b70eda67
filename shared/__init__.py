"""
Shared utilities for the OIDC access engine.

This package aggregates the ambient building blocks consumed by the
engine and its adapters:

- config: Client configuration via pydantic-settings
- logging: Structured logging with trace and request correlation
- metrics: Prometheus counters for provider calls and token checks
- errors: Canonical error base type and error response model
- test_helpers: Key material, token factories and a mock provider

Do not import from oidc_access into shared/; the dependency only goes
the other way.
"""
