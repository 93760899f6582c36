"""OpenTelemetry tracing configuration for TACo Storage.

Tracing is off by default. Applications that already configure a tracer
provider do not need to call configure_tracing(); adapter spans are emitted
through the global provider either way.

Environment Variables:
    TACO_STORAGE_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    TACO_STORAGE_REQUIRE_OTEL: Set to "1" to fail if tracing cannot initialize
    TACO_STORAGE_OTEL_SERVICE_NAME: Service name for spans (default: "taco-storage")
    TACO_STORAGE_OTEL_EXPORTER: Exporter type - "otlp" or "console" (default: "otlp")
    TACO_STORAGE_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (optional)
    TACO_STORAGE_OTEL_TEST_CAPTURE: Set to "1" to use in-memory exporter for tests

Security:
    - Never export plaintext, message kits, keys or JWTs
    - Object ids are exported only as SHA-256 digests
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from taco_storage.config import _get_env_bool

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

OTEL_ENABLED_ENV = "TACO_STORAGE_OTEL_ENABLED"
REQUIRE_OTEL_ENV = "TACO_STORAGE_REQUIRE_OTEL"
OTEL_SERVICE_NAME_ENV = "TACO_STORAGE_OTEL_SERVICE_NAME"
OTEL_EXPORTER_ENV = "TACO_STORAGE_OTEL_EXPORTER"
OTEL_ENDPOINT_ENV = "TACO_STORAGE_OTEL_EXPORTER_OTLP_ENDPOINT"
OTEL_TEST_CAPTURE_ENV = "TACO_STORAGE_OTEL_TEST_CAPTURE"

_tracer_provider: TracerProvider | None = None
_is_configured: bool = False
_test_exporter: Any = None  # InMemorySpanExporter when test capture is on


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and TACO_STORAGE_REQUIRE_OTEL=1."""

    pass


def _get_env_str(key: str, default: str = "") -> str:
    """Get string from environment variable."""
    return os.environ.get(key, default).strip()


def is_tracing_enabled() -> bool:
    """Check whether adapter operations should emit spans."""
    return _get_env_bool(OTEL_ENABLED_ENV, False)


def _create_otlp_exporter(endpoint: str | None) -> Any:
    """Create the OTLP/HTTP exporter (requires the "otlp" extra)."""
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    kwargs: dict[str, Any] = {}
    if endpoint:
        kwargs["endpoint"] = endpoint
    return OTLPSpanExporter(**kwargs)


def configure_tracing() -> bool:
    """Configure OpenTelemetry tracing for TACo Storage.

    Idempotent - safe to call multiple times.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If TACO_STORAGE_REQUIRE_OTEL=1 and configuration fails.
    """
    global _tracer_provider, _is_configured, _test_exporter

    enabled = _get_env_bool(OTEL_ENABLED_ENV, False)
    require_otel = _get_env_bool(REQUIRE_OTEL_ENV, False)
    test_capture = _get_env_bool(OTEL_TEST_CAPTURE_ENV, False)

    if not enabled:
        _is_configured = True
        logger.debug("OpenTelemetry tracing disabled (%s not set)", OTEL_ENABLED_ENV)
        return False

    if _test_exporter is not None and test_capture:
        return True

    if _is_configured and _tracer_provider is not None:
        return True

    _is_configured = True

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )

        service_name = _get_env_str(OTEL_SERVICE_NAME_ENV, "taco-storage")
        exporter_type = _get_env_str(OTEL_EXPORTER_ENV, "otlp")
        endpoint = _get_env_str(OTEL_ENDPOINT_ENV, "")

        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

        if test_capture:
            from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
                InMemorySpanExporter,
            )

            _test_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
        elif exporter_type == "console":
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        else:
            provider.add_span_processor(BatchSpanProcessor(_create_otlp_exporter(endpoint or None)))

        trace.set_tracer_provider(provider)
        _tracer_provider = provider

        logger.info(
            "OpenTelemetry tracing configured: service=%s, exporter=%s",
            service_name,
            exporter_type if not test_capture else "in-memory",
        )
        return True

    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if require_otel:
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False


def get_test_spans() -> list[ReadableSpan]:
    """Get captured spans from in-memory exporter (for testing).

    Returns:
        List of captured spans if TACO_STORAGE_OTEL_TEST_CAPTURE=1, else empty list.
    """
    if _test_exporter is not None:
        return list(_test_exporter.get_finished_spans())
    return []


def reset_tracing() -> None:
    """Reset tracing configuration (for testing).

    The global TracerProvider cannot be replaced once set, so the test
    exporter is kept and only its captured spans are cleared.
    """
    global _is_configured

    if _test_exporter is not None:
        _test_exporter.clear()
    _is_configured = False
