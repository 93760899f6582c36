"""Local AES-GCM encryption service.

Stands in for the threshold network during development and in tests. The
condition JSON is bound to the ciphertext as associated data, so a message
kit cannot be re-labelled with a weaker condition. Time conditions are
evaluated against a local clock; any other condition needs an evaluator
callback and fails closed without one.

This is not threshold encryption: whoever holds the key can decrypt.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import operator
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from taco_storage.conditions import (
    DEFAULT_CONDITION_CHAIN_ID,
    ContractCondition,
    TimeCondition,
    condition_to_dict,
    create_ownership_condition,
    create_time_condition,
)
from taco_storage.config import TacoConfig
from taco_storage.core.encryption import EncryptionResult, MessageKit
from taco_storage.errors import DecryptionError, EncryptionError, InvalidConfigError

logger = logging.getLogger(__name__)

KEY_SIZE_BYTES = 32
NONCE_SIZE_BYTES = 12
MESSAGE_KIT_VERSION = 1

ConditionEvaluator = Callable[[dict[str, Any], Any], bool]

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}


def generate_key() -> str:
    """Generate a fresh base64-encoded AES-256 key."""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


def _canonical_json(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class LocalMessageKit:
    """Ciphertext envelope produced by LocalEncryptionService."""

    nonce: bytes
    ciphertext: bytes
    conditions: Any

    def to_bytes(self) -> bytes:
        return _canonical_json(
            {
                "version": MESSAGE_KIT_VERSION,
                "nonce": base64.b64encode(self.nonce).decode("ascii"),
                "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
                "conditions": self.conditions,
            }
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> LocalMessageKit:
        """Parse a serialized message kit.

        Raises:
            ValueError: If the bytes are not a version 1 message kit.
        """
        try:
            data = json.loads(bytes(raw).decode("utf-8"))
            if data.get("version") != MESSAGE_KIT_VERSION:
                raise ValueError(f"Unsupported message kit version: {data.get('version')}")
            return cls(
                nonce=base64.b64decode(data["nonce"], validate=True),
                ciphertext=base64.b64decode(data["ciphertext"], validate=True),
                conditions=data.get("conditions"),
            )
        except (
            UnicodeDecodeError,
            json.JSONDecodeError,
            KeyError,
            AttributeError,
            TypeError,
        ) as e:
            raise ValueError(f"Malformed message kit: {e}") from e
        except binascii.Error as e:
            raise ValueError(f"Malformed message kit encoding: {e}") from e


class LocalEncryptionService:
    """Encryption service using a single symmetric key."""

    def __init__(
        self,
        key: bytes,
        *,
        chain: int = DEFAULT_CONDITION_CHAIN_ID,
        clock: Callable[[], datetime] | None = None,
        evaluator: ConditionEvaluator | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            key: 32-byte AES key.
            chain: Chain id used for conditions created by this service.
            clock: Returns the current time; defaults to UTC now.
            evaluator: Decides non-time conditions given the caller's auth.

        Raises:
            InvalidConfigError: If the key has the wrong length.
        """
        if len(key) != KEY_SIZE_BYTES:
            raise InvalidConfigError(f"Local encryption key must be {KEY_SIZE_BYTES} bytes")
        self._aesgcm = AESGCM(key)
        self._chain = chain
        self._clock = clock or (lambda: datetime.now(UTC))
        self._evaluator = evaluator

    @classmethod
    def from_config(cls, config: TacoConfig, **kwargs: Any) -> LocalEncryptionService:
        """Build from TacoConfig.local_encryption_key.

        Raises:
            InvalidConfigError: If the key is missing or not valid base64.
        """
        if not config.local_encryption_key:
            raise InvalidConfigError("Local encryption key is not configured")
        try:
            key = base64.b64decode(config.local_encryption_key, validate=True)
        except binascii.Error as e:
            raise InvalidConfigError("Local encryption key is not valid base64", cause=e) from e
        kwargs.setdefault("chain", config.condition_chain_id)
        return cls(key, **kwargs)

    def initialize(self) -> None:
        """Nothing to set up; present for interface compliance."""

    def encrypt(self, data: bytes | str, condition: Any, auth: Any) -> EncryptionResult:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if not payload:
            raise EncryptionError("Data to encrypt cannot be empty")

        conditions = condition_to_dict(condition)
        try:
            nonce = os.urandom(NONCE_SIZE_BYTES)
            ciphertext = self._aesgcm.encrypt(nonce, payload, _canonical_json(conditions))
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Failed to encrypt data: {e}", cause=e) from e

        kit = LocalMessageKit(nonce=nonce, ciphertext=ciphertext, conditions=conditions)
        return EncryptionResult(message_kit=kit, conditions=conditions)

    def decrypt(self, message_kit: MessageKit, auth: Any) -> bytes:
        if not isinstance(message_kit, LocalMessageKit):
            message_kit = self.load_message_kit(message_kit.to_bytes())

        self._check_conditions(message_kit.conditions, auth)

        try:
            return self._aesgcm.decrypt(
                message_kit.nonce,
                message_kit.ciphertext,
                _canonical_json(message_kit.conditions),
            )
        except InvalidTag as e:
            raise DecryptionError("Failed to decrypt data: authentication failed", cause=e) from e

    def load_message_kit(self, raw: bytes) -> LocalMessageKit:
        try:
            return LocalMessageKit.from_bytes(raw)
        except ValueError as e:
            raise DecryptionError(f"Invalid message kit: {e}", cause=e) from e

    def create_time_condition(self, expires_at: datetime) -> TimeCondition:
        return create_time_condition(expires_at, chain=self._chain, now=self._clock())

    def create_ownership_condition(
        self, contract_address: str, token_id: str | int | None = None
    ) -> ContractCondition:
        return create_ownership_condition(contract_address, token_id, chain=self._chain)

    def _check_conditions(self, conditions: Any, auth: Any) -> None:
        if isinstance(conditions, dict) and conditions.get("conditionType") == "time":
            if self._time_condition_holds(conditions):
                return
            raise DecryptionError("Access denied: time condition not satisfied")

        if self._evaluator is None:
            raise DecryptionError("Access denied: condition cannot be evaluated locally")
        if not self._evaluator(conditions, auth):
            raise DecryptionError("Access denied: condition not satisfied")

    def _time_condition_holds(self, conditions: dict[str, Any]) -> bool:
        test = conditions.get("returnValueTest") or {}
        compare = _COMPARATORS.get(test.get("comparator", ""))
        if compare is None:
            logger.warning("Unknown comparator in time condition: %s", test.get("comparator"))
            return False
        try:
            expected = int(test.get("value"))
        except (TypeError, ValueError):
            return False
        block_time = int(self._clock().timestamp())
        return compare(block_time, expected)
