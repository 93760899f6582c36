"""Encryption service boundary for TACo Storage.

The storage core treats encryption as a black box: it hands plaintext and
an access condition to an EncryptionService and gets back an opaque message
kit that can be serialized with ``to_bytes()``. Two implementations ship:

- ThresholdEncryptionService: delegates to an injected TACo network client.
- LocalEncryptionService: AES-GCM for development and tests
  (see taco_storage.core.local_encryption).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from taco_storage.conditions import (
    ContractCondition,
    TimeCondition,
    condition_to_dict,
    create_ownership_condition,
    create_time_condition,
)
from taco_storage.config import TacoConfig
from taco_storage.errors import (
    DecryptionError,
    EncryptionError,
    InvalidConfigError,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class MessageKit(Protocol):
    """Opaque ciphertext envelope."""

    def to_bytes(self) -> bytes: ...


@dataclass(frozen=True)
class EncryptionResult:
    """Result of an encrypt call.

    Attributes:
        message_kit: The ciphertext envelope.
        conditions: JSON form of the condition the data was encrypted under.
    """

    message_kit: MessageKit
    conditions: Any


class EncryptionService(Protocol):
    """Contract between the orchestrator and an encryption backend."""

    def initialize(self) -> None: ...

    def encrypt(self, data: bytes | str, condition: Any, auth: Any) -> EncryptionResult: ...

    def decrypt(self, message_kit: MessageKit, auth: Any) -> bytes: ...

    def load_message_kit(self, raw: bytes) -> MessageKit: ...

    def create_time_condition(self, expires_at: datetime) -> TimeCondition: ...

    def create_ownership_condition(
        self, contract_address: str, token_id: str | int | None = None
    ) -> ContractCondition: ...


class ThresholdClient(Protocol):
    """Network primitive performing threshold encryption and decryption."""

    def initialize(self) -> None: ...

    def encrypt(
        self,
        provider: Any,
        domain: str,
        data: bytes,
        condition: Any,
        ritual_id: int,
        signer: Any,
    ) -> MessageKit: ...

    def decrypt(
        self,
        provider: Any,
        domain: str,
        message_kit: MessageKit,
        context: dict[str, Any] | None,
        signer: Any,
    ) -> bytes: ...

    def message_kit_from_bytes(self, raw: bytes) -> MessageKit: ...


def _to_bytes(data: bytes | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


class ThresholdEncryptionService:
    """Encryption service backed by the TACo threshold network.

    The network client is injected; this class owns configuration (domain,
    ritual id, condition chain) and maps client failures onto the error
    taxonomy.
    """

    def __init__(self, config: TacoConfig, client: ThresholdClient, provider: Any = None) -> None:
        self._config = config
        self._client = client
        self._provider = provider
        self._initialized = False

    @property
    def domain(self) -> str:
        return self._config.domain

    def initialize(self) -> None:
        """Initialize the threshold client. Safe to call repeatedly.

        Raises:
            EncryptionError: If the client fails to initialize.
        """
        if self._initialized:
            return
        try:
            self._client.initialize()
        except Exception as e:
            raise EncryptionError("Failed to initialize TACo system", cause=e) from e
        self._initialized = True
        logger.info("TACo threshold client initialized: domain=%s", self._config.domain)

    def encrypt(self, data: bytes | str, condition: Any, auth: Any) -> EncryptionResult:
        self.initialize()

        payload = _to_bytes(data)
        if not payload:
            raise EncryptionError("Data to encrypt cannot be empty")

        try:
            message_kit = self._client.encrypt(
                self._provider,
                self._config.domain,
                payload,
                condition,
                self._config.ritual_id,
                auth,
            )
        except Exception as e:
            raise EncryptionError(f"Failed to encrypt data: {e}", cause=e) from e

        return EncryptionResult(message_kit=message_kit, conditions=condition_to_dict(condition))

    def decrypt(self, message_kit: MessageKit, auth: Any) -> bytes:
        self.initialize()

        context = dict(self._config.condition_context) if self._config.condition_context else None
        try:
            return bytes(
                self._client.decrypt(
                    self._provider,
                    self._config.domain,
                    message_kit,
                    context,
                    auth,
                )
            )
        except Exception as e:
            raise DecryptionError(f"Failed to decrypt data: {e}", cause=e) from e

    def load_message_kit(self, raw: bytes) -> MessageKit:
        try:
            return self._client.message_kit_from_bytes(raw)
        except Exception as e:
            raise DecryptionError(f"Invalid message kit: {e}", cause=e) from e

    def create_time_condition(self, expires_at: datetime) -> TimeCondition:
        return create_time_condition(expires_at, chain=self._config.condition_chain_id)

    def create_ownership_condition(
        self, contract_address: str, token_id: str | int | None = None
    ) -> ContractCondition:
        return create_ownership_condition(
            contract_address, token_id, chain=self._config.condition_chain_id
        )


def build_encryption_service(config: TacoConfig) -> EncryptionService:
    """Build the default encryption service for a configuration.

    Only the local service can be built from configuration alone; the
    threshold service needs a network client and must be injected.

    Raises:
        InvalidConfigError: If no local key is configured.
    """
    from taco_storage.core.local_encryption import LocalEncryptionService

    if not config.local_encryption_key:
        raise InvalidConfigError(
            "No encryption service configured: pass encryption_service or set a local key"
        )
    return LocalEncryptionService.from_config(config)
