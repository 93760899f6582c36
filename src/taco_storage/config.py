"""TACo Storage configuration.

Configuration objects are immutable once built. Explicit arguments win;
``from_env()`` constructors fill in values from the environment.

Environment Variables:
    TACO_STORAGE_DOMAIN: TACo network domain (default: "devnet")
    TACO_STORAGE_RITUAL_ID: DKG ritual id used for encryption (default: 0)
    TACO_STORAGE_CONDITION_CHAIN_ID: Chain id for default conditions
    TACO_STORAGE_LOCAL_KEY: Base64 AES-256 key for the local encryption service
    TACO_STORAGE_KUBO_URL: Kubo RPC endpoint (default: http://localhost:5001)
    TACO_STORAGE_KUBO_PIN: "0" disables pinning on the Kubo adapter
    TACO_STORAGE_INDEX_PATH: JSON file backing the id->locator index
    TACO_STORAGE_PINATA_JWT: Pinata API JWT
    TACO_STORAGE_PINATA_GATEWAY: Pinata gateway host
    TACO_STORAGE_SQLITE_PATH: SQLite database file (default: in-memory)
    TACO_STORAGE_SQLITE_WAL: "1" enables WAL journal mode
"""

from __future__ import annotations

import os
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from taco_storage.conditions import DEFAULT_CONDITION_CHAIN_ID
from taco_storage.errors import InvalidConfigError

TACO_STORAGE_DOMAIN_ENV = "TACO_STORAGE_DOMAIN"
TACO_STORAGE_RITUAL_ID_ENV = "TACO_STORAGE_RITUAL_ID"
TACO_STORAGE_CONDITION_CHAIN_ID_ENV = "TACO_STORAGE_CONDITION_CHAIN_ID"
TACO_STORAGE_LOCAL_KEY_ENV = "TACO_STORAGE_LOCAL_KEY"
TACO_STORAGE_KUBO_URL_ENV = "TACO_STORAGE_KUBO_URL"
TACO_STORAGE_KUBO_PIN_ENV = "TACO_STORAGE_KUBO_PIN"
TACO_STORAGE_INDEX_PATH_ENV = "TACO_STORAGE_INDEX_PATH"
TACO_STORAGE_PINATA_JWT_ENV = "TACO_STORAGE_PINATA_JWT"
TACO_STORAGE_PINATA_GATEWAY_ENV = "TACO_STORAGE_PINATA_GATEWAY"
TACO_STORAGE_SQLITE_PATH_ENV = "TACO_STORAGE_SQLITE_PATH"
TACO_STORAGE_SQLITE_WAL_ENV = "TACO_STORAGE_SQLITE_WAL"

DEFAULT_DOMAIN = "devnet"
DEFAULT_KUBO_URL = "http://localhost:5001"
DEFAULT_TIMEOUT_SECONDS = 30.0

M = TypeVar("M", bound=BaseModel)


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def _get_env_str(key: str) -> str | None:
    val = os.environ.get(key, "").strip()
    return val or None


def _values_from_env(mapping: dict[str, str]) -> dict[str, Any]:
    """Collect set environment variables keyed by config field name."""
    values: dict[str, Any] = {}
    for field_name, env_var in mapping.items():
        val = _get_env_str(env_var)
        if val is not None:
            values[field_name] = val
    return values


def build_config(model: type[M], values: dict[str, Any]) -> M:
    """Validate config values, translating pydantic errors.

    Raises:
        InvalidConfigError: If any value fails validation.
    """
    try:
        return model.model_validate(values)
    except ValidationError as e:
        raise InvalidConfigError(
            f"Invalid {model.__name__}: {e.error_count()} validation error(s)",
            cause=e,
        ) from e


class TacoConfig(BaseModel):
    """Encryption-side configuration for the orchestrator.

    Attributes:
        domain: TACo network domain. Fixed for the lifetime of the instance.
        ritual_id: DKG ritual id used when encrypting.
        condition_chain_id: Chain id used for default time conditions.
        condition_context: Extra context values forwarded on decrypt.
        local_encryption_key: Base64 key for LocalEncryptionService.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    domain: str = Field(default=DEFAULT_DOMAIN, min_length=1)
    ritual_id: int = Field(default=0, ge=0)
    condition_chain_id: int = Field(default=DEFAULT_CONDITION_CHAIN_ID, gt=0)
    condition_context: dict[str, Any] | None = None
    local_encryption_key: str | None = Field(default=None, repr=False)

    @classmethod
    def from_env(cls, **overrides: Any) -> TacoConfig:
        values = _values_from_env(
            {
                "domain": TACO_STORAGE_DOMAIN_ENV,
                "ritual_id": TACO_STORAGE_RITUAL_ID_ENV,
                "condition_chain_id": TACO_STORAGE_CONDITION_CHAIN_ID_ENV,
                "local_encryption_key": TACO_STORAGE_LOCAL_KEY_ENV,
            }
        )
        values.update(overrides)
        return build_config(cls, values)


class KuboAdapterConfig(BaseModel):
    """Configuration for the Kubo (IPFS RPC) adapter.

    Attributes:
        url: Base URL of the Kubo RPC API.
        timeout_seconds: Per-request timeout.
        pin: Pin content on add so the node does not garbage collect it.
        index_path: JSON file for the id->CID index (in-memory if None).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(default=DEFAULT_KUBO_URL, min_length=1)
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    pin: bool = True
    index_path: str | None = None

    @classmethod
    def from_env(cls, **overrides: Any) -> KuboAdapterConfig:
        values: dict[str, Any] = {
            "pin": _get_env_bool(TACO_STORAGE_KUBO_PIN_ENV, True),
        }
        values.update(
            _values_from_env(
                {"url": TACO_STORAGE_KUBO_URL_ENV, "index_path": TACO_STORAGE_INDEX_PATH_ENV}
            )
        )
        values.update(overrides)
        return build_config(cls, values)


class PinataAdapterConfig(BaseModel):
    """Configuration for the Pinata pinning-service adapter.

    Attributes:
        jwt: Pinata API JSON Web Token.
        gateway: Gateway host used to read content (e.g. "x.mypinata.cloud").
        api_url: Pinata management API base URL.
        uploads_url: Pinata uploads API base URL.
        timeout_seconds: Per-request timeout.
        index_path: JSON file for the id->CID index (in-memory if None).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    jwt: str = Field(min_length=1, repr=False)
    gateway: str = Field(min_length=1)
    api_url: str = "https://api.pinata.cloud"
    uploads_url: str = "https://uploads.pinata.cloud"
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    index_path: str | None = None

    @classmethod
    def from_env(cls, **overrides: Any) -> PinataAdapterConfig:
        values = _values_from_env(
            {
                "jwt": TACO_STORAGE_PINATA_JWT_ENV,
                "gateway": TACO_STORAGE_PINATA_GATEWAY_ENV,
                "index_path": TACO_STORAGE_INDEX_PATH_ENV,
            }
        )
        values.update(overrides)
        return build_config(cls, values)


class SQLiteAdapterConfig(BaseModel):
    """Configuration for the SQLite adapter.

    Attributes:
        database_path: Database file path, or ":memory:".
        enable_wal: Switch the journal to WAL mode on initialize().
        timeout_seconds: Busy timeout for locked databases.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    database_path: str = Field(default=":memory:", min_length=1)
    enable_wal: bool = False
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)

    @classmethod
    def from_env(cls, **overrides: Any) -> SQLiteAdapterConfig:
        values: dict[str, Any] = {
            "enable_wal": _get_env_bool(TACO_STORAGE_SQLITE_WAL_ENV, False),
        }
        values.update(_values_from_env({"database_path": TACO_STORAGE_SQLITE_PATH_ENV}))
        values.update(overrides)
        return build_config(cls, values)
