"""OpenTelemetry tracing for adapter operations.

Security:
    - Object ids and locators are exported only as SHA-256 digests
    - Payload bytes, message kits and credentials never reach span attributes
"""

from __future__ import annotations

import functools
import hashlib
import logging
from collections.abc import Callable
from typing import Any, TypeVar, cast

from opentelemetry import trace

from taco_storage.models import StorageMetadata, StorageResult, StoredPayload
from taco_storage.observability.tracing import is_tracing_enabled

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

TRACER_NAME = "taco_storage.adapter"


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def traced_adapter_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace adapter operations with OpenTelemetry.

    Args:
        operation: Operation name (e.g., "store", "retrieve", "delete").

    Returns:
        Decorated method that emits spans when tracing is enabled.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            if not is_tracing_enabled():
                return func(self, *args, **kwargs)

            tracer = trace.get_tracer(TRACER_NAME)
            with tracer.start_as_current_span(f"{TRACER_NAME}.{operation}") as span:
                span.set_attribute("storage.backend", getattr(self, "backend_name", "unknown"))
                _add_argument_attributes(span, args)

                try:
                    result = func(self, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

                _add_result_attributes(span, result)
                return result

        return cast(F, wrapper)

    return decorator


def _add_argument_attributes(span: Any, args: tuple[Any, ...]) -> None:
    if not args:
        return
    first = args[0]
    if isinstance(first, str):
        span.set_attribute("taco_storage.locator_sha256", _sha256(first))
    elif isinstance(first, (bytes, bytearray)):
        span.set_attribute("taco_storage.payload_size_bytes", len(first))
    if len(args) > 1 and isinstance(args[1], StorageMetadata):
        span.set_attribute("taco_storage.object_id_sha256", _sha256(args[1].id))


def _add_result_attributes(span: Any, result: Any) -> None:
    """Add result-based attributes to span safely."""
    metadata: StorageMetadata | None = None
    if isinstance(result, StorageResult):
        metadata = result.metadata
    elif isinstance(result, StoredPayload):
        metadata = result.metadata
    elif isinstance(result, bool):
        span.set_attribute("taco_storage.result", result)
    elif isinstance(result, list):
        span.set_attribute("taco_storage.result_count", len(result))

    if metadata is not None:
        span.set_attribute("taco_storage.object_id_sha256", _sha256(metadata.id))
        span.set_attribute("taco_storage.object_size_bytes", metadata.size)
        span.set_attribute("taco_storage.object_content_type", metadata.content_type)
