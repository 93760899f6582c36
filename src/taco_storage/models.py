"""TACo Storage data models.

Provides typed dataclasses for the metadata envelope that travels between
the encryption service and the storage adapters, and the results returned
to callers.

Serialized field names follow the persisted wire format (camelCase), so
envelopes written by other TACo Storage implementations stay readable.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, str):
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Invalid createdAt value: {raw!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class EncryptionMetadata:
    """Encryption details attached to a stored object.

    Attributes:
        message_kit: Serialized message kit (ciphertext envelope).
        conditions: JSON description of the access condition. Opaque to
            the storage layer; it only has to survive serialization.
    """

    message_kit: bytes
    conditions: Any

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation (byte values as a list)."""
        return {
            "messageKit": list(self.message_kit),
            "conditions": self.conditions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EncryptionMetadata:
        """Create from the wire representation."""
        # Accepts raw bytes or the list-of-ints wire form.
        message_kit = bytes(data.get("messageKit") or b"")
        return cls(message_kit=message_kit, conditions=data.get("conditions"))


@dataclass(frozen=True)
class StorageMetadata:
    """Metadata for one logical stored object.

    Attributes:
        id: Caller-facing identifier, immutable once assigned.
        content_type: MIME type of the original plaintext.
        size: Length in bytes of the encrypted payload handed to the backend.
        created_at: Timestamp fixed when the object was stored.
        encryption_metadata: Message kit bytes and access condition.
        metadata: Optional custom metadata supplied by the caller.
        backend_hash: Backend-native identifier (e.g. IPFS CID), if any.
    """

    id: str
    content_type: str
    size: int
    created_at: datetime
    encryption_metadata: EncryptionMetadata
    metadata: dict[str, Any] | None = None
    backend_hash: str | None = None

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValueError("size must be >= 0")

    def with_backend_hash(self, backend_hash: str) -> StorageMetadata:
        """Return a copy carrying the given backend-native identifier."""
        return dataclasses.replace(self, backend_hash=backend_hash)

    def to_dict(self) -> dict[str, Any]:
        """Convert metadata to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "id": self.id,
            "contentType": self.content_type,
            "size": self.size,
            "createdAt": _format_timestamp(self.created_at),
            "encryptionMetadata": self.encryption_metadata.to_dict(),
        }
        if self.metadata is not None:
            result["metadata"] = self.metadata
        if self.backend_hash is not None:
            result["ipfsHash"] = self.backend_hash
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageMetadata:
        """Create metadata from dictionary.

        Raises:
            ValueError: If a required field is missing or malformed.
        """
        try:
            object_id = data["id"]
            created_at = _parse_timestamp(data["createdAt"])
            encryption_raw = data["encryptionMetadata"]
        except KeyError as e:
            raise ValueError(f"Missing metadata field: {e.args[0]}") from e

        custom = data.get("metadata")
        backend_hash = data.get("ipfsHash")

        return cls(
            id=str(object_id),
            content_type=str(data.get("contentType") or "application/octet-stream"),
            size=int(data.get("size", 0)),
            created_at=created_at,
            encryption_metadata=EncryptionMetadata.from_dict(encryption_raw),
            metadata=dict(custom) if custom is not None else None,
            backend_hash=str(backend_hash) if backend_hash else None,
        )


@dataclass(frozen=True)
class StorageResult:
    """Result of a successful store.

    Attributes:
        id: Logical identifier of the stored object.
        reference: Backend-scoped locator; only valid for the adapter
            instance that produced it.
        metadata: Metadata as persisted by the backend.
    """

    id: str
    reference: str
    metadata: StorageMetadata


@dataclass(frozen=True)
class RetrievalResult:
    """Decrypted data plus its storage metadata."""

    data: bytes
    metadata: StorageMetadata


@dataclass(frozen=True)
class StoredPayload:
    """Encrypted payload and metadata as returned by an adapter."""

    encrypted_data: bytes
    metadata: StorageMetadata


@dataclass(frozen=True)
class HealthStatus:
    """Health report of a storage backend."""

    healthy: bool
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"healthy": self.healthy, "details": dict(self.details)}
