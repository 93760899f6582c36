"""Tests for KuboAdapter against an in-process fake Kubo RPC API.

No IPFS node is required; httpx.MockTransport serves the RPC endpoints.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from taco_storage.adapters.index import FileLocatorIndex, InMemoryLocatorIndex
from taco_storage.adapters.kubo import KuboAdapter, KuboRequestError
from taco_storage.config import KuboAdapterConfig
from taco_storage.envelope import decode_envelope
from taco_storage.errors import (
    AdapterError,
    InvalidReferenceError,
    NotFoundError,
    RetrievalError,
)
from taco_storage.models import EncryptionMetadata, StorageMetadata

from conftest import FakeKuboNode, fake_cid

T0 = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


def _metadata(object_id: str = "doc-1", offset_seconds: int = 0) -> StorageMetadata:
    return StorageMetadata(
        id=object_id,
        content_type="text/plain",
        size=9,
        created_at=T0 + timedelta(seconds=offset_seconds),
        encryption_metadata=EncryptionMetadata(
            message_kit=b"kit-bytes", conditions={"conditionType": "time"}
        ),
        metadata={"author": "test-user"},
    )


@pytest.fixture
def kubo(kubo_node: FakeKuboNode) -> Iterator[KuboAdapter]:
    """Yield an initialized KuboAdapter wired to the fake node."""
    adapter = KuboAdapter(KuboAdapterConfig(), http_client=kubo_node.client())
    adapter.initialize()
    yield adapter
    adapter.cleanup()


class TestKuboInitialize:
    """Tests for initialize()."""

    def test_probes_node_identity_and_version(self, kubo_node: FakeKuboNode) -> None:
        """initialize() calls id and version."""
        adapter = KuboAdapter(http_client=kubo_node.client())
        adapter.initialize()

        assert kubo_node.requests == ["id", "version"]

    def test_unreachable_node_raises_adapter_error(self, kubo_node: FakeKuboNode) -> None:
        """Connection failures surface as AdapterError with a hint."""
        kubo_node.offline = True
        adapter = KuboAdapter(http_client=kubo_node.client())

        with pytest.raises(AdapterError, match="check that IPFS node is running") as exc_info:
            adapter.initialize()
        assert isinstance(exc_info.value.cause, KuboRequestError)

    def test_operations_before_initialize_raise(self, kubo_node: FakeKuboNode) -> None:
        """Uninitialized adapters refuse to operate."""
        adapter = KuboAdapter(http_client=kubo_node.client())

        with pytest.raises(AdapterError):
            adapter.store(b"x", _metadata())
        with pytest.raises(AdapterError):
            adapter.retrieve("doc-1")
        assert adapter.get_health().healthy is False

    def test_index_path_uses_file_index(self, kubo_node: FakeKuboNode, tmp_path: Path) -> None:
        """A configured index_path persists the id->CID map."""
        config = KuboAdapterConfig(index_path=str(tmp_path / "kubo-index.json"))
        writer = KuboAdapter(config, http_client=kubo_node.client())
        writer.initialize()
        assert isinstance(writer.index, FileLocatorIndex)
        writer.store(b"ciphertext", _metadata())
        writer.cleanup()

        reader = KuboAdapter(config, http_client=kubo_node.client())
        reader.initialize()
        assert reader.retrieve("doc-1").encrypted_data == b"ciphertext"


class TestKuboStoreRetrieve:
    """Tests for store() and retrieve()."""

    def test_store_returns_ipfs_reference(
        self, kubo: KuboAdapter, kubo_node: FakeKuboNode
    ) -> None:
        """The reference is ipfs://<cid> and the CID is recorded as backend hash."""
        result = kubo.store(b"ciphertext", _metadata())

        cid = result.metadata.backend_hash
        assert cid is not None
        assert result.reference == f"ipfs://{cid}"
        assert cid in kubo_node.pinned

    def test_stored_content_is_json_envelope(
        self, kubo: KuboAdapter, kubo_node: FakeKuboNode
    ) -> None:
        """The node holds the envelope, not the raw ciphertext."""
        result = kubo.store(b"ciphertext", _metadata())

        payload = decode_envelope(kubo_node.blocks[result.metadata.backend_hash or ""])

        assert payload.encrypted_data == b"ciphertext"
        assert payload.metadata.id == "doc-1"

    @pytest.mark.parametrize("form", ["id", "reference", "cid"])
    def test_retrieve_by_any_locator_form(self, kubo: KuboAdapter, form: str) -> None:
        """Logical id, ipfs:// reference and bare CID all resolve."""
        result = kubo.store(b"ciphertext", _metadata())
        locator = {
            "id": "doc-1",
            "reference": result.reference,
            "cid": result.metadata.backend_hash or "",
        }[form]

        payload = kubo.retrieve(locator)

        assert payload.encrypted_data == b"ciphertext"
        assert payload.metadata.metadata == {"author": "test-user"}
        assert payload.metadata.backend_hash == result.metadata.backend_hash

    def test_pin_disabled(self, kubo_node: FakeKuboNode) -> None:
        """With pin=False content is added unpinned."""
        adapter = KuboAdapter(KuboAdapterConfig(pin=False), http_client=kubo_node.client())
        adapter.initialize()

        adapter.store(b"ciphertext", _metadata())

        assert kubo_node.pinned == set()

    def test_overwrite_repoints_id_and_unpins_old_cid(
        self, kubo: KuboAdapter, kubo_node: FakeKuboNode
    ) -> None:
        """Re-storing an id moves it to the new CID and releases the old one."""
        first = kubo.store(b"first", _metadata())
        second = kubo.store(b"second", _metadata(offset_seconds=1))

        assert first.metadata.backend_hash != second.metadata.backend_hash
        assert kubo.retrieve("doc-1").encrypted_data == b"second"
        assert first.metadata.backend_hash not in kubo_node.pinned
        assert kubo.list() == ["doc-1"]

    def test_unknown_id_raises_not_found(self, kubo: KuboAdapter) -> None:
        """An id the index does not know is NotFound."""
        with pytest.raises(NotFoundError):
            kubo.retrieve("missing")

    def test_unknown_cid_raises_not_found(self, kubo: KuboAdapter) -> None:
        """A well-formed CID the node cannot find is NotFound."""
        with pytest.raises(NotFoundError):
            kubo.retrieve(fake_cid(b"never stored"))

    def test_malformed_reference_raises(self, kubo: KuboAdapter) -> None:
        """An ipfs:// reference without a valid CID is rejected."""
        with pytest.raises(InvalidReferenceError):
            kubo.retrieve("ipfs://garbage")

    @pytest.mark.parametrize("object_id", ["ipfs://x", "memory://x", "sqlite://x"])
    def test_reference_shaped_id_resolves_through_index(
        self, kubo: KuboAdapter, object_id: str
    ) -> None:
        """A logical id that looks like a reference is looked up before parsing."""
        result = kubo.store(b"ciphertext", _metadata(object_id))

        assert kubo.retrieve(object_id).metadata.id == object_id
        assert kubo.retrieve(result.reference).metadata.id == object_id
        assert kubo.exists(object_id) is True
        assert kubo.delete(object_id) is True
        assert kubo.exists(object_id) is False

    def test_non_envelope_content_raises_retrieval_error(
        self, kubo: KuboAdapter, kubo_node: FakeKuboNode
    ) -> None:
        """Content that is not an envelope cannot be decoded."""
        cid = fake_cid(b"plain bytes")
        kubo_node.blocks[cid] = b"plain bytes"

        with pytest.raises(RetrievalError):
            kubo.retrieve(cid)


class TestKuboDeleteExists:
    """Tests for delete(), exists() and list()."""

    def test_delete_unpins_and_forgets_id(
        self, kubo: KuboAdapter, kubo_node: FakeKuboNode
    ) -> None:
        """delete returns True, unpins, and the id no longer resolves."""
        result = kubo.store(b"ciphertext", _metadata())

        assert kubo.delete("doc-1") is True
        assert result.metadata.backend_hash not in kubo_node.pinned
        assert kubo.delete("doc-1") is False
        with pytest.raises(NotFoundError):
            kubo.retrieve("doc-1")

    def test_delete_by_reference_removes_index_entry(self, kubo: KuboAdapter) -> None:
        """Deleting through the reference also drops the id mapping."""
        result = kubo.store(b"ciphertext", _metadata())

        assert kubo.delete(result.reference) is True
        assert kubo.list() == []

    def test_delete_unknown_id_returns_false(self, kubo: KuboAdapter) -> None:
        """Unknown ids are not an error."""
        assert kubo.delete("missing") is False

    def test_exists(self, kubo: KuboAdapter) -> None:
        """exists reflects presence on the node and never raises."""
        result = kubo.store(b"ciphertext", _metadata())

        assert kubo.exists("doc-1") is True
        assert kubo.exists(result.reference) is True
        assert kubo.exists("missing") is False
        assert kubo.exists(fake_cid(b"never stored")) is False
        assert kubo.exists("ipfs://garbage") is False
        assert kubo.exists("") is False

    def test_exists_false_when_node_unreachable(
        self, kubo: KuboAdapter, kubo_node: FakeKuboNode
    ) -> None:
        """Transport failures report False."""
        kubo.store(b"ciphertext", _metadata())
        kubo_node.offline = True

        assert kubo.exists("doc-1") is False

    def test_list_is_newest_first_and_paginated(self, kubo: KuboAdapter) -> None:
        """list pages through indexed ids by creation time."""
        for i in range(5):
            kubo.store(f"payload-{i}".encode(), _metadata(f"doc-{i}", offset_seconds=i))

        assert kubo.list(limit=2) == ["doc-4", "doc-3"]
        assert kubo.list(limit=2, offset=4) == ["doc-0"]


class TestKuboHealth:
    """Tests for get_health()."""

    def test_healthy_node_details(self, kubo: KuboAdapter) -> None:
        """Health reports node id, version and addresses."""
        kubo.store(b"ciphertext", _metadata())

        status = kubo.get_health()

        assert status.healthy is True
        assert status.details["nodeId"] == FakeKuboNode.NODE_ID
        assert status.details["version"] == FakeKuboNode.VERSION
        assert status.details["addresses"] == FakeKuboNode.ADDRESSES
        assert status.details["indexedObjects"] == 1

    def test_unreachable_node_is_unhealthy(
        self, kubo: KuboAdapter, kubo_node: FakeKuboNode
    ) -> None:
        """Health never raises; it reports the error."""
        kubo_node.offline = True

        status = kubo.get_health()

        assert status.healthy is False
        assert "error" in status.details


class TestKuboCleanup:
    """Tests for cleanup()."""

    def test_injected_client_left_open(self, kubo_node: FakeKuboNode) -> None:
        """cleanup() does not close a client it did not create."""
        client = kubo_node.client()
        adapter = KuboAdapter(http_client=client)
        adapter.initialize()

        adapter.cleanup()
        adapter.cleanup()

        assert client.is_closed is False

    def test_injected_index_is_used(self, kubo_node: FakeKuboNode) -> None:
        """A caller-supplied index receives the id->CID records."""
        index = InMemoryLocatorIndex()
        adapter = KuboAdapter(http_client=kubo_node.client(), index=index)
        adapter.initialize()

        result = adapter.store(b"ciphertext", _metadata())

        record: Any = index.get("doc-1")
        assert record.locator == result.metadata.backend_hash
