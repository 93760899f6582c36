"""TACo Storage adapter interface definition.

Provides the StorageAdapter contract that every storage backend must
implement, and the SupportsList protocol for the optional list capability.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from taco_storage.models import HealthStatus, StorageMetadata, StorageResult, StoredPayload


class StorageAdapter(ABC):
    """Abstract base class for storage backends.

    All implementations must:
    - Refuse every data operation until initialize() has succeeded
    - Guarantee read-after-write for the reference returned by store()
    - Apply last-write-wins when an id is stored again
    - Never raise from get_health(), and never raise for absence from
      delete() or exists()

    Implementations:
    - InMemoryAdapter: process-local dict (dev/test)
    - SQLiteAdapter: keyed relational store
    - KuboAdapter: content-addressed IPFS node
    - PinataAdapter: hosted IPFS pinning service
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for observability.

        Returns:
            Backend name string (e.g., "sqlite", "kubo").
        """
        ...

    @abstractmethod
    def initialize(self) -> None:
        """Establish connectivity and schema.

        Raises:
            AdapterError: If the backend cannot be reached or set up.
        """
        ...

    @abstractmethod
    def store(self, encrypted_data: bytes, metadata: StorageMetadata) -> StorageResult:
        """Store an encrypted payload with its metadata.

        Args:
            encrypted_data: Non-empty serialized message kit.
            metadata: Metadata for the object; metadata.id is the logical id.

        Returns:
            StorageResult whose reference resolves to this object immediately.

        Raises:
            StorageError: If the payload is empty or the write fails.
            AdapterError: If the adapter is not initialized.
        """
        ...

    @abstractmethod
    def retrieve(self, locator: str) -> StoredPayload:
        """Retrieve an encrypted payload and its metadata.

        Args:
            locator: Logical id, or a reference returned by this adapter.

        Raises:
            NotFoundError: If no object matches.
            InvalidReferenceError: If the locator is not in this backend's grammar.
            RetrievalError: On transport or format failures.
            AdapterError: If the adapter is not initialized.
        """
        ...

    @abstractmethod
    def delete(self, locator: str) -> bool:
        """Delete an object and its metadata.

        Returns:
            True if an object was removed, False if nothing matched.

        Raises:
            StorageError: On operational failures only.
            AdapterError: If the adapter is not initialized.
        """
        ...

    @abstractmethod
    def exists(self, locator: str) -> bool:
        """Best-effort existence check.

        Returns False whenever existence cannot be proven, including for
        malformed locators.

        Raises:
            AdapterError: If the adapter is not initialized.
        """
        ...

    @abstractmethod
    def get_health(self) -> HealthStatus:
        """Probe the backend. Never raises; failures set healthy=False."""
        ...

    @abstractmethod
    def cleanup(self) -> None:
        """Release backend resources. Safe to call repeatedly or before initialize()."""
        ...


@runtime_checkable
class SupportsList(Protocol):
    """Optional capability: enumerate stored ids."""

    def list(self, limit: int | None = None, offset: int | None = None) -> list[str]:
        """Return stored ids, newest first, paginated."""
        ...
