"""Observability hooks for TACo Storage (OpenTelemetry tracing)."""

from taco_storage.observability.tracing import (
    TracingConfigError,
    configure_tracing,
    get_test_spans,
    is_tracing_enabled,
    reset_tracing,
)

__all__ = [
    "TracingConfigError",
    "configure_tracing",
    "get_test_spans",
    "is_tracing_enabled",
    "reset_tracing",
]
