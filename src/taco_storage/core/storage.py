"""TACo Storage orchestrator.

TacoStorage is the public entry point. It sequences validation,
encryption, metadata construction and adapter dispatch on store, and
adapter fetch, message kit reconstruction and decryption on retrieve.

Error policy:
    TacoStorageError subclasses raised below the orchestrator propagate
    unchanged. Any other exception is wrapped exactly once in the error type
    of the operation (StorageError for writes, RetrievalError for reads,
    AdapterError for lifecycle calls) with the original chained as cause.
    get_health() never raises.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from taco_storage.adapters.base import StorageAdapter, SupportsList
from taco_storage.adapters.index import LocatorIndex
from taco_storage.adapters.kubo import KuboAdapter
from taco_storage.adapters.memory import InMemoryAdapter
from taco_storage.adapters.pinata import PinataAdapter
from taco_storage.adapters.sqlite import SQLiteAdapter
from taco_storage.conditions import ContractCondition, TimeCondition
from taco_storage.config import (
    KuboAdapterConfig,
    PinataAdapterConfig,
    SQLiteAdapterConfig,
    TacoConfig,
)
from taco_storage.core.encryption import (
    EncryptionService,
    ThresholdClient,
    ThresholdEncryptionService,
    build_encryption_service,
)
from taco_storage.errors import (
    AdapterError,
    InvalidConfigError,
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
)

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_CONDITION_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class StoreOptions:
    """Options for TacoStorage.store().

    Attributes:
        id: Logical id; a UUID is generated when omitted.
        content_type: MIME type of the plaintext.
        metadata: Custom metadata, stored verbatim.
        condition: Access condition; defaults to a time condition.
        expires_at: Expiry for the default time condition (now + 24h if None).
    """

    id: str | None = None
    content_type: str = DEFAULT_CONTENT_TYPE
    metadata: dict[str, Any] | None = None
    condition: Any = None
    expires_at: datetime | None = None


def _validate_id(object_id: Any) -> None:
    if not isinstance(object_id, str) or not object_id.strip():
        raise InvalidConfigError("Invalid ID: must be a non-empty string")


@contextmanager
def _wrap_untyped(
    error_cls: type[TacoStorageError], action: str, key: str | None = None
) -> Iterator[None]:
    """Let typed errors through; wrap anything else once in ``error_cls``."""
    try:
        yield
    except TacoStorageError:
        raise
    except Exception as e:
        raise error_cls(f"Failed to {action}: {e}", key=key, cause=e) from e


class TacoStorage:
    """Encrypted storage facade over a pluggable StorageAdapter."""

    def __init__(
        self,
        adapter: StorageAdapter,
        config: TacoConfig | None = None,
        provider: Any = None,
        *,
        encryption_service: EncryptionService | None = None,
        threshold_client: ThresholdClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Wire an adapter to an encryption service.

        Args:
            adapter: Storage backend. Owned by this instance until cleanup().
            config: TACo domain, ritual and condition settings.
            provider: Chain access handle passed to the threshold client.
            encryption_service: Explicit encryption service.
            threshold_client: Network client; wrapped in a
                ThresholdEncryptionService when no service is given.
            clock: Returns the current time; defaults to UTC now.

        Raises:
            InvalidConfigError: If no encryption service can be built.
        """
        self._config = config or TacoConfig()
        self._adapter = adapter
        self._provider = provider
        self._clock = clock or (lambda: datetime.now(UTC))

        if encryption_service is not None:
            self._encryption = encryption_service
        elif threshold_client is not None:
            self._encryption = ThresholdEncryptionService(
                self._config, threshold_client, provider
            )
        else:
            self._encryption = build_encryption_service(self._config)

    @property
    def adapter(self) -> StorageAdapter:
        return self._adapter

    @property
    def config(self) -> TacoConfig:
        return self._config

    @property
    def encryption_service(self) -> EncryptionService:
        return self._encryption

    def initialize(self) -> None:
        """Initialize the adapter, then the encryption service."""
        with _wrap_untyped(AdapterError, "initialize storage"):
            self._adapter.initialize()
            self._encryption.initialize()
        logger.info(
            "TACo storage initialized: backend=%s domain=%s",
            self._adapter.backend_name,
            self._config.domain,
        )

    def store(
        self,
        data: bytes | str,
        auth: Any,
        options: StoreOptions | None = None,
    ) -> StorageResult:
        """Encrypt data and persist it through the adapter.

        Args:
            data: Plaintext; str is encoded as UTF-8.
            auth: Caller's auth principal, handed to the encryption service.
            options: Id, content type, custom metadata and condition.

        Returns:
            StorageResult with the logical id and backend reference.

        Raises:
            InvalidConfigError: If data is empty or the id/expiry is invalid.
            EncryptionError: If encryption fails.
            StorageError: If the backend write fails.
        """
        payload = data.encode("utf-8") if isinstance(data, str) else data
        if not isinstance(payload, (bytes, bytearray, memoryview)) or len(payload) == 0:
            raise InvalidConfigError("Data cannot be empty")

        options = options or StoreOptions()
        if options.id is not None:
            _validate_id(options.id)

        with _wrap_untyped(StorageError, "store data", options.id):
            now = self._clock()
            condition = options.condition
            if condition is None:
                condition = self._encryption.create_time_condition(
                    options.expires_at or now + DEFAULT_CONDITION_TTL
                )

            encrypted = self._encryption.encrypt(bytes(payload), condition, auth)
            message_kit = encrypted.message_kit.to_bytes()

            metadata = StorageMetadata(
                id=options.id or str(uuid.uuid4()),
                content_type=options.content_type or DEFAULT_CONTENT_TYPE,
                size=len(message_kit),
                created_at=now,
                encryption_metadata=EncryptionMetadata(
                    message_kit=message_kit,
                    conditions=encrypted.conditions,
                ),
                metadata=dict(options.metadata) if options.metadata is not None else None,
            )
            result = self._adapter.store(message_kit, metadata)

        logger.debug(
            "Stored object: id=%s backend=%s size=%d",
            result.id,
            self._adapter.backend_name,
            metadata.size,
        )
        return result

    def retrieve(self, object_id: str, auth: Any) -> RetrievalResult:
        """Fetch and decrypt an object.

        Raises:
            InvalidConfigError: If object_id is empty.
            NotFoundError: If the backend holds no such object.
            DecryptionError: If the caller does not satisfy the condition.
            RetrievalError: If the backend read fails.
        """
        _validate_id(object_id)

        with _wrap_untyped(RetrievalError, "retrieve data", object_id):
            stored = self._adapter.retrieve(object_id)
            message_kit = self._encryption.load_message_kit(stored.encrypted_data)
            data = self._encryption.decrypt(message_kit, auth)

        return RetrievalResult(data=data, metadata=stored.metadata)

    def delete(self, object_id: str) -> bool:
        """Delete an object. Returns False if nothing matched."""
        _validate_id(object_id)
        with _wrap_untyped(StorageError, "delete data", object_id):
            return self._adapter.delete(object_id)

    def exists(self, object_id: str) -> bool:
        _validate_id(object_id)
        with _wrap_untyped(StorageError, "check existence", object_id):
            return self._adapter.exists(object_id)

    def get_metadata(self, object_id: str) -> StorageMetadata:
        """Return stored metadata without decrypting the payload."""
        _validate_id(object_id)
        with _wrap_untyped(RetrievalError, "get metadata", object_id):
            return self._adapter.retrieve(object_id).metadata

    def list(self, limit: int | None = None, offset: int | None = None) -> list[str]:
        """List stored ids, newest first.

        Raises:
            AdapterError: If the adapter has no list capability.
        """
        if not isinstance(self._adapter, SupportsList):
            raise AdapterError(
                f"List operation not supported by {self._adapter.backend_name} adapter"
            )
        with _wrap_untyped(RetrievalError, "list data"):
            return self._adapter.list(limit=limit, offset=offset)

    def get_health(self) -> HealthStatus:
        try:
            return self._adapter.get_health()
        except Exception as e:
            logger.warning(
                "Health check failed: backend=%s error=%s", self._adapter.backend_name, e
            )
            return HealthStatus(healthy=False, details={"error": str(e)})

    def cleanup(self) -> None:
        with _wrap_untyped(AdapterError, "cleanup storage"):
            self._adapter.cleanup()

    def create_time_condition(self, expires_at: datetime) -> TimeCondition:
        return self._encryption.create_time_condition(expires_at)

    def create_ownership_condition(
        self, contract_address: str, token_id: str | int | None = None
    ) -> ContractCondition:
        return self._encryption.create_ownership_condition(contract_address, token_id)

    @classmethod
    def create_with_memory(
        cls,
        config: TacoConfig | None = None,
        provider: Any = None,
        **kwargs: Any,
    ) -> TacoStorage:
        """Build and initialize storage over an InMemoryAdapter."""
        storage = cls(InMemoryAdapter(), config, provider, **kwargs)
        storage.initialize()
        return storage

    @classmethod
    def create_with_sqlite(
        cls,
        config: TacoConfig | None = None,
        provider: Any = None,
        sqlite_config: SQLiteAdapterConfig | None = None,
        **kwargs: Any,
    ) -> TacoStorage:
        """Build and initialize storage over a SQLiteAdapter."""
        storage = cls(SQLiteAdapter(sqlite_config), config, provider, **kwargs)
        storage.initialize()
        return storage

    @classmethod
    def create_with_kubo(
        cls,
        config: TacoConfig | None = None,
        provider: Any = None,
        kubo_config: KuboAdapterConfig | None = None,
        *,
        http_client: httpx.Client | None = None,
        index: LocatorIndex | None = None,
        **kwargs: Any,
    ) -> TacoStorage:
        """Build and initialize storage over a KuboAdapter."""
        adapter = KuboAdapter(kubo_config, http_client=http_client, index=index)
        storage = cls(adapter, config, provider, **kwargs)
        storage.initialize()
        return storage

    @classmethod
    def create_with_pinata(
        cls,
        pinata_config: PinataAdapterConfig,
        config: TacoConfig | None = None,
        provider: Any = None,
        *,
        http_client: httpx.Client | None = None,
        index: LocatorIndex | None = None,
        **kwargs: Any,
    ) -> TacoStorage:
        """Build and initialize storage over a PinataAdapter."""
        adapter = PinataAdapter(pinata_config, http_client=http_client, index=index)
        storage = cls(adapter, config, provider, **kwargs)
        storage.initialize()
        return storage
