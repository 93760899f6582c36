"""JSON envelope codec for content-addressed backends.

Content-addressed stores hold a single blob per object, so the encrypted
payload and its metadata are packed together:

    {"data": [<byte values>], "metadata": {..., "createdAt": "<ISO-8601>"}}
"""

from __future__ import annotations

import json
import logging
from typing import Any

from taco_storage.errors import RetrievalError
from taco_storage.models import StorageMetadata, StoredPayload

logger = logging.getLogger(__name__)


def encode_envelope(encrypted_data: bytes, metadata: StorageMetadata) -> bytes:
    """Serialize payload and metadata into UTF-8 JSON bytes."""
    package: dict[str, Any] = {
        "data": list(encrypted_data),
        "metadata": metadata.to_dict(),
    }
    return json.dumps(package, separators=(",", ":")).encode("utf-8")


def decode_envelope(raw: bytes, *, key: str | None = None) -> StoredPayload:
    """Parse an envelope produced by encode_envelope.

    Raises:
        RetrievalError: If the bytes are not a well-formed envelope.
    """
    try:
        package = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RetrievalError(
            f"Stored envelope is not valid JSON: {e}", key=key, cause=e
        ) from e

    if not isinstance(package, dict) or "data" not in package or "metadata" not in package:
        raise RetrievalError("Stored envelope is missing data or metadata", key=key)

    try:
        encrypted_data = bytes(package["data"])
        metadata = StorageMetadata.from_dict(package["metadata"])
    except (TypeError, ValueError) as e:
        raise RetrievalError(
            f"Stored envelope is malformed: {e}", key=key, cause=e
        ) from e

    logger.debug("Decoded envelope id=%s size=%d", metadata.id, len(encrypted_data))
    return StoredPayload(encrypted_data=encrypted_data, metadata=metadata)
