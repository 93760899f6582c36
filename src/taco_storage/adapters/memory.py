"""In-memory storage adapter for development and testing.

Objects live in a dict keyed by logical id. References have the form
``memory://<id>``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from taco_storage.adapters.base import StorageAdapter
from taco_storage.adapters.helpers import (
    format_reference,
    paginate,
    strip_scheme,
    validate_data,
    validate_id,
)
from taco_storage.adapters.tracing import traced_adapter_operation
from taco_storage.errors import AdapterError, NotFoundError
from taco_storage.models import HealthStatus, StorageMetadata, StorageResult, StoredPayload

logger = logging.getLogger(__name__)

MEMORY_SCHEME = "memory"


class InMemoryAdapter(StorageAdapter):
    """Keyed adapter holding objects in process memory."""

    def __init__(self) -> None:
        self._objects: dict[str, StoredPayload] = {}
        self._lock = threading.Lock()
        self._initialized = False

    @property
    def backend_name(self) -> str:
        return "memory"

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise AdapterError("In-memory adapter not initialized. Call initialize() first.")

    def _resolve(self, locator: str) -> str:
        """Map a logical id or ``memory://<id>`` reference to the dict key.

        A stored id always wins over reading the value as a reference.
        """
        validate_id(locator)
        with self._lock:
            if locator in self._objects:
                return locator
        object_id = strip_scheme(locator, MEMORY_SCHEME)
        return object_id if object_id else locator

    def initialize(self) -> None:
        self._initialized = True

    @traced_adapter_operation("store")
    def store(self, encrypted_data: bytes, metadata: StorageMetadata) -> StorageResult:
        self._ensure_initialized()
        validate_data(encrypted_data)

        with self._lock:
            self._objects[metadata.id] = StoredPayload(
                encrypted_data=bytes(encrypted_data), metadata=metadata
            )

        logger.debug("Stored object in memory: id=%s size=%d", metadata.id, len(encrypted_data))
        return StorageResult(
            id=metadata.id,
            reference=format_reference(MEMORY_SCHEME, metadata.id),
            metadata=metadata,
        )

    @traced_adapter_operation("retrieve")
    def retrieve(self, locator: str) -> StoredPayload:
        self._ensure_initialized()
        object_id = self._resolve(locator)
        with self._lock:
            payload = self._objects.get(object_id)
        if payload is None:
            raise NotFoundError(f"Data not found for ID: {object_id}", key=object_id)
        return payload

    @traced_adapter_operation("delete")
    def delete(self, locator: str) -> bool:
        self._ensure_initialized()
        object_id = self._resolve(locator)
        with self._lock:
            return self._objects.pop(object_id, None) is not None

    @traced_adapter_operation("exists")
    def exists(self, locator: str) -> bool:
        self._ensure_initialized()
        if not isinstance(locator, str) or not locator.strip():
            return False
        object_id = self._resolve(locator)
        with self._lock:
            return object_id in self._objects

    @traced_adapter_operation("list")
    def list(self, limit: int | None = None, offset: int | None = None) -> list[str]:
        self._ensure_initialized()
        with self._lock:
            payloads = sorted(self._objects.values(), key=lambda p: p.metadata.id)
        payloads.sort(key=lambda p: p.metadata.created_at, reverse=True)
        return paginate([p.metadata.id for p in payloads], limit, offset)

    def get_health(self) -> HealthStatus:
        with self._lock:
            count = len(self._objects)
        details: dict[str, Any] = {"initialized": self._initialized, "recordCount": count}
        if not self._initialized:
            details["error"] = "In-memory adapter not initialized"
        return HealthStatus(healthy=self._initialized, details=details)

    def cleanup(self) -> None:
        with self._lock:
            self._objects.clear()
        self._initialized = False
