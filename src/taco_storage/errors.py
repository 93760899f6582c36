"""TACo Storage error types.

Every failure surfaced by the orchestrator or an adapter is a subclass of
TacoStorageError. Callers branch on the concrete class (or on ``kind``):
NotFoundError means the backend affirmatively reported absence, while
RetrievalError means the backend could not be asked.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Error taxonomy shared by the orchestrator and all adapters."""

    INVALID_CONFIG = "INVALID_CONFIG"
    ENCRYPTION_ERROR = "ENCRYPTION_ERROR"
    DECRYPTION_ERROR = "DECRYPTION_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    RETRIEVAL_ERROR = "RETRIEVAL_ERROR"
    NOT_FOUND = "NOT_FOUND"
    ADAPTER_ERROR = "ADAPTER_ERROR"
    INVALID_REFERENCE = "INVALID_REFERENCE"


class TacoStorageError(Exception):
    """Base exception for TACo Storage operations.

    Attributes:
        message: Human-readable error message.
        key: Object id or locator associated with the operation (if any).
        cause: The underlying exception, when this error wraps one.
    """

    kind: ErrorKind = ErrorKind.STORAGE_ERROR

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.key = key
        self.cause = cause

    def __str__(self) -> str:
        if self.key:
            return f"{self.message} key={self.key}"
        return self.message


class InvalidConfigError(TacoStorageError):
    """Bad caller input: empty data or id, malformed address, past expiry."""

    kind = ErrorKind.INVALID_CONFIG


class EncryptionError(TacoStorageError):
    """Raised when the encryption service cannot produce a message kit."""

    kind = ErrorKind.ENCRYPTION_ERROR


class DecryptionError(TacoStorageError):
    """Raised when decryption fails or access conditions are not satisfied."""

    kind = ErrorKind.DECRYPTION_ERROR


class StorageError(TacoStorageError):
    """Unexpected failure on a write path (store, delete)."""

    kind = ErrorKind.STORAGE_ERROR


class RetrievalError(TacoStorageError):
    """Unexpected failure on a read path (transport or format)."""

    kind = ErrorKind.RETRIEVAL_ERROR


class NotFoundError(TacoStorageError):
    """The backend affirmatively reported that no object matches."""

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str = "Data not found",
        *,
        key: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, key=key, cause=cause)


class AdapterError(TacoStorageError):
    """Operational failure of the backend itself.

    Covers an uninitialized or closed client, a backend that cannot be
    reached during initialize(), and a missing optional capability.
    """

    kind = ErrorKind.ADAPTER_ERROR


class InvalidReferenceError(TacoStorageError):
    """The locator does not match the backend's reference grammar."""

    kind = ErrorKind.INVALID_REFERENCE
