"""Pinata pinning-service storage adapter.

Uploads the JSON envelope to Pinata (public network) through the v3 files
API and reads it back through the configured gateway. Pinata assigns both
a file id (needed to delete) and the CID; both are kept in the locator
index under the caller's logical id.

References have the form ``https://<gateway>/ipfs/<cid>``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from taco_storage.adapters.base import StorageAdapter
from taco_storage.adapters.helpers import is_valid_cid, validate_data
from taco_storage.adapters.index import (
    FileLocatorIndex,
    InMemoryLocatorIndex,
    LocatorIndex,
    LocatorRecord,
    ResolvedLocator,
    resolve_locator,
)
from taco_storage.adapters.tracing import traced_adapter_operation
from taco_storage.config import PinataAdapterConfig
from taco_storage.envelope import decode_envelope, encode_envelope
from taco_storage.errors import (
    AdapterError,
    InvalidReferenceError,
    NotFoundError,
    RetrievalError,
    StorageError,
    TacoStorageError,
)
from taco_storage.models import HealthStatus, StorageMetadata, StorageResult, StoredPayload

logger = logging.getLogger(__name__)

PINATA_NETWORK = "public"
FILE_ID_KEY = "file_id"
UPLOAD_FILENAME = "file.json"


class PinataRequestError(Exception):
    """Pinata or gateway call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _normalize_gateway(gateway: str) -> str:
    host = gateway.strip()
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            host = host[len(prefix) :]
    return host.rstrip("/")


class PinataAdapter(StorageAdapter):
    """Content-addressed adapter backed by the Pinata pinning service."""

    def __init__(
        self,
        config: PinataAdapterConfig,
        *,
        http_client: httpx.Client | None = None,
        index: LocatorIndex | None = None,
    ) -> None:
        """Initialize the Pinata adapter.

        Args:
            config: JWT, gateway host and API endpoints.
            http_client: Optional httpx.Client for dependency injection (testing).
                An injected client is not closed by cleanup().
            index: Id to CID/file-id index. Defaults to a FileLocatorIndex
                when config.index_path is set, otherwise an in-memory index.
        """
        self._config = config
        self._gateway = _normalize_gateway(config.gateway)
        self._api_url = config.api_url.rstrip("/")
        self._uploads_url = config.uploads_url.rstrip("/")
        self._injected_client = http_client
        self._client: httpx.Client | None = None
        self._index = index

    @property
    def backend_name(self) -> str:
        return "pinata"

    @property
    def index(self) -> LocatorIndex:
        if self._index is None:
            raise AdapterError("Pinata adapter not initialized. Call initialize() first.")
        return self._index

    def _ensure_client(self) -> httpx.Client:
        if self._client is None:
            raise AdapterError("Pinata adapter not initialized. Call initialize() first.")
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._config.jwt}"}

    def _request(
        self,
        method: str,
        url: str,
        *,
        authenticated: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and raise on transport errors or non-2xx status.

        Raises:
            PinataRequestError: On failure; status_code is set for HTTP errors.
        """
        client = self._ensure_client()
        headers = self._auth_headers() if authenticated else {}
        try:
            response = client.request(
                method,
                url,
                headers=headers,
                timeout=self._config.timeout_seconds,
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise PinataRequestError(f"{method} {url}: {e}") from e

        if response.status_code >= 400:
            raise PinataRequestError(
                f"{method} {url}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def generate_reference(self, cid: str) -> str:
        return f"https://{self._gateway}/ipfs/{cid}"

    def _parse_reference(self, value: str) -> str | None:
        prefix = f"https://{self._gateway}/ipfs/"
        if not value.startswith(prefix):
            return None
        cid = value[len(prefix) :]
        if not is_valid_cid(cid):
            raise InvalidReferenceError("Invalid Pinata gateway reference", key=value)
        return cid

    def _resolve(self, locator: str) -> ResolvedLocator | None:
        return resolve_locator(self.index, locator, self._parse_reference)

    def initialize(self) -> None:
        """Create the client. Credentials are checked by get_health()."""
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
        logger.info("Pinata adapter initialized: gateway=%s", self._gateway)

    def _upload(self, content: bytes, name: str) -> tuple[str, str]:
        """Upload content. Returns (file id, cid)."""
        response = self._request(
            "POST",
            f"{self._uploads_url}/v3/files",
            files={"file": (UPLOAD_FILENAME, content, "application/json")},
            data={"network": PINATA_NETWORK, "name": name},
        )
        data = response.json().get("data") or {}
        file_id, cid = data.get("id"), data.get("cid")
        if not file_id or not cid:
            raise PinataRequestError("Upload response did not include a file id and CID")
        return str(file_id), str(cid)

    def _find_file_ids(self, cid: str) -> list[str]:
        response = self._request(
            "GET", f"{self._api_url}/v3/files/{PINATA_NETWORK}", params={"cid": cid}
        )
        files = (response.json().get("data") or {}).get("files") or []
        return [str(f["id"]) for f in files if f.get("id")]

    def _delete_file(self, file_id: str) -> bool:
        """Delete a file by id. Returns False if Pinata does not know it."""
        try:
            self._request("DELETE", f"{self._api_url}/v3/files/{PINATA_NETWORK}/{file_id}")
        except PinataRequestError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    @traced_adapter_operation("store")
    def store(self, encrypted_data: bytes, metadata: StorageMetadata) -> StorageResult:
        self._ensure_client()
        validate_data(encrypted_data)

        try:
            file_id, cid = self._upload(encode_envelope(encrypted_data, metadata), metadata.id)
        except (PinataRequestError, ValueError, AttributeError) as e:
            raise StorageError(
                f"Failed to store data on Pinata: {e}", key=metadata.id, cause=e
            ) from e

        previous = self.index.put(
            LocatorRecord(
                id=metadata.id,
                locator=cid,
                created_at=metadata.created_at,
                extra={FILE_ID_KEY: file_id},
            )
        )
        if previous is not None and previous.extra.get(FILE_ID_KEY) != file_id:
            self._release_superseded(previous)

        logger.debug("Stored object on Pinata: id=%s cid=%s", metadata.id, cid)
        return StorageResult(
            id=metadata.id,
            reference=self.generate_reference(cid),
            metadata=metadata.with_backend_hash(cid),
        )

    def _release_superseded(self, previous: LocatorRecord) -> None:
        file_id = previous.extra.get(FILE_ID_KEY)
        if not file_id:
            return
        try:
            self._delete_file(str(file_id))
        except PinataRequestError as e:
            logger.warning(
                "Failed to delete superseded Pinata file: id=%s file_id=%s error=%s",
                previous.id,
                file_id,
                e,
            )

    @traced_adapter_operation("retrieve")
    def retrieve(self, locator: str) -> StoredPayload:
        self._ensure_client()
        resolved = self._resolve(locator)
        if resolved is None:
            raise NotFoundError(f"Data not found for ID: {locator}", key=locator)

        try:
            response = self._request(
                "GET", self.generate_reference(resolved.locator), authenticated=False
            )
        except PinataRequestError as e:
            if e.status_code == 404:
                raise NotFoundError(
                    f"Data not found for ID: {locator}", key=locator, cause=e
                ) from e
            raise RetrievalError(
                f"Failed to retrieve data from Pinata gateway: {e}", key=locator, cause=e
            ) from e

        payload = decode_envelope(response.content, key=locator)
        metadata = payload.metadata.with_backend_hash(resolved.locator)
        return StoredPayload(encrypted_data=payload.encrypted_data, metadata=metadata)

    @traced_adapter_operation("delete")
    def delete(self, locator: str) -> bool:
        self._ensure_client()
        resolved = self._resolve(locator)
        if resolved is None:
            return False

        try:
            if resolved.record is not None and resolved.record.extra.get(FILE_ID_KEY):
                file_ids = [str(resolved.record.extra[FILE_ID_KEY])]
            else:
                file_ids = self._find_file_ids(resolved.locator)
            deleted = [self._delete_file(file_id) for file_id in file_ids]
        except (PinataRequestError, ValueError, AttributeError, KeyError) as e:
            raise StorageError(
                f"Failed to delete data from Pinata: {e}", key=locator, cause=e
            ) from e

        if resolved.record is not None:
            self.index.remove(resolved.record.id)
            return True
        return any(deleted)

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
            return bool(self._find_file_ids(resolved.locator))
        except (PinataRequestError, ValueError, AttributeError, KeyError) as e:
            logger.debug("Pinata existence check failed: cid=%s error=%s", resolved.locator, e)
            return False

    @traced_adapter_operation("list")
    def list(self, limit: int | None = None, offset: int | None = None) -> list[str]:
        self._ensure_client()
        return self.index.list_ids(limit, offset)

    def get_health(self) -> HealthStatus:
        details: dict[str, Any] = {"gateway": self._gateway}
        try:
            response = self._request("GET", f"{self._api_url}/data/testAuthentication")
            details["message"] = response.json().get("message")
        except (TacoStorageError, PinataRequestError, ValueError, AttributeError) as e:
            details["error"] = str(e)
            return HealthStatus(healthy=False, details=details)

        details["indexedObjects"] = self.index.count()
        return HealthStatus(healthy=True, details=details)

    def cleanup(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._client is not self._injected_client:
            self._client.close()
        self._client = None
        if self._index is not None:
            self._index.close()
