"""Kubo (go-ipfs) storage adapter.

Talks to an external Kubo node over its RPC API. Each object is stored
as a JSON envelope ``{"data": [...], "metadata": {...}}`` added with
CIDv1, so the CID is derived from the ciphertext and the metadata together.

References have the form ``ipfs://<cid>``. Callers may pass the logical id,
the reference, or a bare CID; the id is resolved through a LocatorIndex.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from taco_storage.adapters.base import StorageAdapter
from taco_storage.adapters.helpers import (
    IPFS_SCHEME,
    format_reference,
    parse_cid_reference,
    strip_scheme,
    validate_data,
)
from taco_storage.adapters.index import (
    FileLocatorIndex,
    InMemoryLocatorIndex,
    LocatorIndex,
    LocatorRecord,
    ResolvedLocator,
    resolve_locator,
)
from taco_storage.adapters.tracing import traced_adapter_operation
from taco_storage.config import KuboAdapterConfig
from taco_storage.envelope import decode_envelope, encode_envelope
from taco_storage.errors import (
    AdapterError,
    NotFoundError,
    RetrievalError,
    StorageError,
    TacoStorageError,
)
from taco_storage.models import HealthStatus, StorageMetadata, StorageResult, StoredPayload

logger = logging.getLogger(__name__)

RPC_PREFIX = "/api/v0"
EXISTS_TIMEOUT_SECONDS = 5.0

_NOT_FOUND_MARKERS = ("not found", "could not find", "no link named")
_NOT_PINNED_MARKER = "not pinned"


class KuboRequestError(Exception):
    """Kubo RPC call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        text = str(self).lower()
        return any(marker in text for marker in _NOT_FOUND_MARKERS)


def _error_message(response: httpx.Response) -> str:
    """Extract Kubo's error message from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("Message"):
        return str(body["Message"])
    return f"HTTP {response.status_code}"


class KuboAdapter(StorageAdapter):
    """Content-addressed adapter for a Kubo node."""

    def __init__(
        self,
        config: KuboAdapterConfig | None = None,
        *,
        http_client: httpx.Client | None = None,
        index: LocatorIndex | None = None,
    ) -> None:
        """Initialize the Kubo adapter.

        Args:
            config: Node URL, timeout and pinning settings.
            http_client: Optional httpx.Client for dependency injection (testing).
                An injected client is not closed by cleanup().
            index: Id to CID index. Defaults to a FileLocatorIndex when
                config.index_path is set, otherwise an in-memory index.
        """
        self._config = config or KuboAdapterConfig()
        self._injected_client = http_client
        self._client: httpx.Client | None = None
        self._index = index
        self._base_url = self._config.url.rstrip("/")

    @property
    def backend_name(self) -> str:
        return "kubo"

    @property
    def index(self) -> LocatorIndex:
        if self._index is None:
            raise AdapterError("Kubo adapter not initialized. Call initialize() first.")
        return self._index

    def _ensure_client(self) -> httpx.Client:
        if self._client is None:
            raise AdapterError("Kubo adapter not initialized. Call initialize() first.")
        return self._client

    def _rpc(
        self,
        command: str,
        *,
        params: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """POST a Kubo RPC command.

        Raises:
            KuboRequestError: On transport errors or non-2xx responses.
        """
        client = self._ensure_client()
        url = f"{self._base_url}{RPC_PREFIX}/{command}"
        try:
            response = client.post(
                url,
                params=params,
                files=files,
                timeout=timeout if timeout is not None else self._config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise KuboRequestError(f"{command}: {e}") from e

        if response.status_code >= 400:
            raise KuboRequestError(
                f"{command}: {_error_message(response)}", status_code=response.status_code
            )
        return response

    def _parse_reference(self, value: str) -> str | None:
        if strip_scheme(value, IPFS_SCHEME) is None:
            return None
        return parse_cid_reference(value)

    def _resolve(self, locator: str) -> ResolvedLocator | None:
        return resolve_locator(self.index, locator, self._parse_reference)

    def initialize(self) -> None:
        """Create the client and probe the node.

        Raises:
            AdapterError: If the node is unreachable or answers unexpectedly.
        """
        if self._client is not None:
            return

        if self._index is None:
            self._index = (
                FileLocatorIndex(self._config.index_path)
                if self._config.index_path
                else InMemoryLocatorIndex()
            )
        self._client = self._injected_client or httpx.Client(
            timeout=self._config.timeout_seconds
        )

        try:
            node_id = self._rpc("id").json()
            version = self._rpc("version").json()
            if not node_id.get("ID") or not version.get("Version"):
                raise KuboRequestError("Invalid response from IPFS node")
        except (KuboRequestError, ValueError, AttributeError) as e:
            self._close_client()
            raise AdapterError(
                "Failed to initialize Kubo IPFS adapter - check that IPFS node is "
                f"running and accessible: {e}",
                cause=e,
            ) from e

        logger.info(
            "Kubo adapter initialized: url=%s node=%s version=%s",
            self._base_url,
            node_id.get("ID"),
            version.get("Version"),
        )

    def _add(self, content: bytes) -> str:
        response = self._rpc(
            "add",
            params={"pin": str(self._config.pin).lower(), "cid-version": 1},
            files={"file": ("data", content, "application/octet-stream")},
        )
        cid = response.json().get("Hash")
        if not cid:
            raise KuboRequestError("add: response did not include a CID")
        return str(cid)

    def _unpin(self, cid: str) -> None:
        if not self._config.pin:
            return
        try:
            self._rpc("pin/rm", params={"arg": cid})
        except KuboRequestError as e:
            if _NOT_PINNED_MARKER not in str(e).lower():
                raise
            logger.debug("Unpin skipped, content was not pinned: cid=%s", cid)

    def generate_reference(self, cid: str) -> str:
        return format_reference(IPFS_SCHEME, cid)

    @traced_adapter_operation("store")
    def store(self, encrypted_data: bytes, metadata: StorageMetadata) -> StorageResult:
        self._ensure_client()
        validate_data(encrypted_data)

        try:
            cid = self._add(encode_envelope(encrypted_data, metadata))
        except (KuboRequestError, ValueError) as e:
            raise StorageError(
                f"Failed to store data on IPFS: {e}", key=metadata.id, cause=e
            ) from e

        previous = self.index.put(
            LocatorRecord(id=metadata.id, locator=cid, created_at=metadata.created_at)
        )
        if previous is not None and previous.locator != cid:
            self._release_superseded(previous)

        logger.debug("Stored object on IPFS: id=%s cid=%s", metadata.id, cid)
        return StorageResult(
            id=metadata.id,
            reference=self.generate_reference(cid),
            metadata=metadata.with_backend_hash(cid),
        )

    def _release_superseded(self, previous: LocatorRecord) -> None:
        """Unpin the CID an overwritten id used to point at."""
        if self.index.find_by_locator(previous.locator) is not None:
            return
        try:
            self._unpin(previous.locator)
        except KuboRequestError as e:
            logger.warning(
                "Failed to unpin superseded content: id=%s cid=%s error=%s",
                previous.id,
                previous.locator,
                e,
            )

    @traced_adapter_operation("retrieve")
    def retrieve(self, locator: str) -> StoredPayload:
        self._ensure_client()
        resolved = self._resolve(locator)
        if resolved is None:
            raise NotFoundError(f"Data not found for ID: {locator}", key=locator)

        try:
            content = self._rpc("cat", params={"arg": resolved.locator}).content
        except KuboRequestError as e:
            if e.is_not_found:
                raise NotFoundError(
                    f"Data not found for ID: {locator}", key=locator, cause=e
                ) from e
            raise RetrievalError(
                f"Failed to retrieve data from IPFS: {e}", key=locator, cause=e
            ) from e

        payload = decode_envelope(content, key=locator)
        metadata = payload.metadata.with_backend_hash(resolved.locator)
        return StoredPayload(encrypted_data=payload.encrypted_data, metadata=metadata)

    @traced_adapter_operation("delete")
    def delete(self, locator: str) -> bool:
        """Unpin the object and forget its id.

        IPFS has no real delete; once the unpin call completes the object is
        reported as removed even if it was never pinned.
        """
        self._ensure_client()
        resolved = self._resolve(locator)
        if resolved is None:
            return False

        try:
            self._unpin(resolved.locator)
        except KuboRequestError as e:
            raise StorageError(
                f"Failed to unpin data on IPFS: {e}", key=locator, cause=e
            ) from e

        if resolved.record is not None:
            self.index.remove(resolved.record.id)
        logger.debug("Deleted object from IPFS: locator=%s cid=%s", locator, resolved.locator)
        return True

    @traced_adapter_operation("exists")
    def exists(self, locator: str) -> bool:
        self._ensure_client()
        try:
            resolved = self._resolve(locator)
        except TacoStorageError:
            return False
        if resolved is None:
            return False

        try:
            self._rpc(
                "files/stat",
                params={"arg": f"/ipfs/{resolved.locator}"},
                timeout=EXISTS_TIMEOUT_SECONDS,
            )
        except KuboRequestError as e:
            logger.debug("IPFS existence check failed: cid=%s error=%s", resolved.locator, e)
            return False
        return True

    @traced_adapter_operation("list")
    def list(self, limit: int | None = None, offset: int | None = None) -> list[str]:
        self._ensure_client()
        return self.index.list_ids(limit, offset)

    def get_health(self) -> HealthStatus:
        try:
            node_id = self._rpc("id").json()
            version = self._rpc("version").json()
        except (TacoStorageError, KuboRequestError, ValueError, AttributeError) as e:
            return HealthStatus(healthy=False, details={"error": str(e)})

        return HealthStatus(
            healthy=True,
            details={
                "nodeId": node_id.get("ID"),
                "version": version.get("Version"),
                "addresses": node_id.get("Addresses") or [],
                "indexedObjects": self.index.count(),
                "checkedAt": datetime.now(UTC).isoformat(),
            },
        )

    def _close_client(self) -> None:
        if self._client is not None and self._client is not self._injected_client:
            self._client.close()
        self._client = None

    def cleanup(self) -> None:
        """Close the HTTP client if this adapter created it."""
        self._close_client()
        if self._index is not None:
            self._index.close()
