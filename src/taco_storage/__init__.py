"""TACo Storage.

Encrypts data under TACo access conditions and stores the ciphertext,
with its metadata, through interchangeable storage backends.

Environment Variables:
    See taco_storage.config and taco_storage.observability.tracing.
"""

from taco_storage.adapters import (
    InMemoryAdapter,
    KuboAdapter,
    PinataAdapter,
    SQLiteAdapter,
    StorageAdapter,
)
from taco_storage.conditions import (
    ContractCondition,
    TimeCondition,
    create_ownership_condition,
    create_time_condition,
)
from taco_storage.config import (
    KuboAdapterConfig,
    PinataAdapterConfig,
    SQLiteAdapterConfig,
    TacoConfig,
)
from taco_storage.core import (
    LocalEncryptionService,
    StoreOptions,
    TacoStorage,
    ThresholdEncryptionService,
)
from taco_storage.errors import (
    AdapterError,
    DecryptionError,
    EncryptionError,
    ErrorKind,
    InvalidConfigError,
    InvalidReferenceError,
    NotFoundError,
    RetrievalError,
    StorageError,
    TacoStorageError,
)
from taco_storage.models import (
    EncryptionMetadata,
    HealthStatus,
    RetrievalResult,
    StorageMetadata,
    StorageResult,
    StoredPayload,
)

__version__ = "0.1.0"

__all__ = [
    "TacoStorage",
    "StoreOptions",
    "TacoConfig",
    "KuboAdapterConfig",
    "PinataAdapterConfig",
    "SQLiteAdapterConfig",
    "StorageAdapter",
    "InMemoryAdapter",
    "SQLiteAdapter",
    "KuboAdapter",
    "PinataAdapter",
    "LocalEncryptionService",
    "ThresholdEncryptionService",
    "TimeCondition",
    "ContractCondition",
    "create_time_condition",
    "create_ownership_condition",
    "EncryptionMetadata",
    "StorageMetadata",
    "StorageResult",
    "RetrievalResult",
    "StoredPayload",
    "HealthStatus",
    "ErrorKind",
    "TacoStorageError",
    "InvalidConfigError",
    "EncryptionError",
    "DecryptionError",
    "StorageError",
    "RetrievalError",
    "NotFoundError",
    "AdapterError",
    "InvalidReferenceError",
]
