"""Orchestrator and encryption service boundary."""

from taco_storage.core.encryption import (
    EncryptionResult,
    EncryptionService,
    MessageKit,
    ThresholdClient,
    ThresholdEncryptionService,
    build_encryption_service,
)
from taco_storage.core.local_encryption import LocalEncryptionService, LocalMessageKit, generate_key
from taco_storage.core.storage import StoreOptions, TacoStorage

__all__ = [
    "EncryptionResult",
    "EncryptionService",
    "MessageKit",
    "ThresholdClient",
    "ThresholdEncryptionService",
    "build_encryption_service",
    "LocalEncryptionService",
    "LocalMessageKit",
    "generate_key",
    "StoreOptions",
    "TacoStorage",
]
