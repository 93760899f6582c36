"""Tests for adapter helper functions and the id->locator index."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from taco_storage.adapters.helpers import (
    DEFAULT_LIST_LIMIT,
    format_reference,
    is_valid_cid,
    paginate,
    parse_cid_reference,
    strip_scheme,
    validate_data,
    validate_id,
)
from taco_storage.adapters.index import (
    FileLocatorIndex,
    InMemoryLocatorIndex,
    LocatorRecord,
    resolve_locator,
)
from taco_storage.errors import (
    AdapterError,
    InvalidConfigError,
    InvalidReferenceError,
    StorageError,
)

CID_V1 = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"
CID_V0 = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"
T0 = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


def _record(object_id: str, locator: str, offset_seconds: int = 0) -> LocatorRecord:
    return LocatorRecord(
        id=object_id, locator=locator, created_at=T0 + timedelta(seconds=offset_seconds)
    )


class TestValidation:
    """Tests for validate_id and validate_data."""

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_invalid_ids_rejected(self, value: Any) -> None:
        """Empty, blank and non-string ids raise InvalidConfigError."""
        with pytest.raises(InvalidConfigError):
            validate_id(value)

    def test_valid_id_accepted(self) -> None:
        """A non-empty string passes."""
        validate_id("doc-1")

    @pytest.mark.parametrize("value", [b"", bytearray(), "text", None])
    def test_invalid_data_rejected(self, value: Any) -> None:
        """Empty or non-bytes payloads raise StorageError."""
        with pytest.raises(StorageError):
            validate_data(value)


class TestReferences:
    """Tests for reference formatting and parsing."""

    def test_format_with_and_without_fragment(self) -> None:
        """Fragments are appended after '#'."""
        assert format_reference("ipfs", CID_V1) == f"ipfs://{CID_V1}"
        assert format_reference("sqlite", "/data/db", "doc-1") == "sqlite:///data/db#doc-1"

    def test_strip_scheme(self) -> None:
        """strip_scheme removes its own prefix and keeps every '#' in the body."""
        assert strip_scheme("sqlite:///data/a#b.db#doc#1", "sqlite") == "/data/a#b.db#doc#1"
        assert strip_scheme(f"ipfs://{CID_V1}", "ipfs") == CID_V1
        assert strip_scheme("doc-1", "sqlite") is None
        assert strip_scheme(f"ipfs://{CID_V1}", "sqlite") is None

    def test_cid_reference_with_fragment_rejected(self) -> None:
        """Trailing text after a CID is not silently dropped."""
        with pytest.raises(InvalidReferenceError):
            parse_cid_reference(f"ipfs://{CID_V1}#extra")

    def test_cid_validation(self) -> None:
        """CIDv0 and CIDv1 parse; other strings do not."""
        assert is_valid_cid(CID_V1)
        assert is_valid_cid(CID_V0)
        assert not is_valid_cid("")
        assert not is_valid_cid("not-a-cid")

    def test_parse_cid_reference(self) -> None:
        """ipfs:// references and bare CIDs yield the CID."""
        assert parse_cid_reference(f"ipfs://{CID_V1}") == CID_V1
        assert parse_cid_reference(CID_V0) == CID_V0

    def test_parse_cid_reference_rejects_malformed(self) -> None:
        """Malformed CIDs raise InvalidReferenceError."""
        with pytest.raises(InvalidReferenceError):
            parse_cid_reference("ipfs://not-a-cid")


class TestPaginate:
    """Tests for paginate."""

    def test_default_limit(self) -> None:
        """Without a limit, at most DEFAULT_LIST_LIMIT items are returned."""
        items = list(range(DEFAULT_LIST_LIMIT + 5))
        assert len(paginate(items, None, None)) == DEFAULT_LIST_LIMIT

    @pytest.mark.parametrize(
        "limit,offset,expected",
        [(2, 0, [0, 1]), (2, 4, [4]), (3, 10, []), (0, 0, [])],
    )
    def test_slices(self, limit: int, offset: int, expected: list[int]) -> None:
        """Pages are min(limit, n - offset) long."""
        assert paginate([0, 1, 2, 3, 4], limit, offset) == expected

    def test_negative_values_rejected(self) -> None:
        """Negative limit or offset raise InvalidConfigError."""
        with pytest.raises(InvalidConfigError):
            paginate([1], -1, 0)
        with pytest.raises(InvalidConfigError):
            paginate([1], 1, -1)


class TestInMemoryLocatorIndex:
    """Tests for InMemoryLocatorIndex."""

    def test_put_replaces_and_returns_previous(self) -> None:
        """put is last-write-wins and returns the replaced record."""
        index = InMemoryLocatorIndex()
        first = _record("doc-1", CID_V0)
        second = _record("doc-1", CID_V1, 5)

        assert index.put(first) is None
        assert index.put(second) == first
        assert index.get("doc-1") == second
        assert index.count() == 1

    def test_remove(self) -> None:
        """remove returns the record, then None."""
        index = InMemoryLocatorIndex()
        index.put(_record("doc-1", CID_V1))

        assert index.remove("doc-1") is not None
        assert index.remove("doc-1") is None

    def test_find_by_locator(self) -> None:
        """Records can be found by their locator."""
        index = InMemoryLocatorIndex()
        index.put(_record("doc-1", CID_V1))

        found = index.find_by_locator(CID_V1)
        assert found is not None and found.id == "doc-1"
        assert index.find_by_locator(CID_V0) is None

    def test_list_newest_first_with_id_tiebreak(self) -> None:
        """Ids are ordered by created_at descending, then id ascending."""
        index = InMemoryLocatorIndex()
        index.put(_record("b", "x", 0))
        index.put(_record("a", "y", 0))
        index.put(_record("c", "z", 10))

        assert index.list_ids() == ["c", "a", "b"]
        assert index.list_ids(limit=1, offset=1) == ["a"]


class TestFileLocatorIndex:
    """Tests for FileLocatorIndex persistence."""

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        """Records written by one instance are read by the next."""
        path = tmp_path / "index.json"
        FileLocatorIndex(path).put(
            LocatorRecord(id="doc-1", locator=CID_V1, created_at=T0, extra={"file_id": "f1"})
        )

        reloaded = FileLocatorIndex(path)
        record = reloaded.get("doc-1")

        assert record is not None
        assert record.locator == CID_V1
        assert record.created_at == T0
        assert record.extra == {"file_id": "f1"}

    def test_remove_is_persisted(self, tmp_path: Path) -> None:
        """Removed records stay removed after reload."""
        path = tmp_path / "index.json"
        index = FileLocatorIndex(path)
        index.put(_record("doc-1", CID_V1))
        index.remove("doc-1")

        assert FileLocatorIndex(path).get("doc-1") is None

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        """Atomic writes clean up their temp files."""
        index = FileLocatorIndex(tmp_path / "index.json")
        index.put(_record("doc-1", CID_V1))
        index.put(_record("doc-2", CID_V0))

        assert [p.name for p in tmp_path.iterdir()] == ["index.json"]

    def test_corrupt_file_raises_adapter_error(self, tmp_path: Path) -> None:
        """An unreadable index fails loudly."""
        path = tmp_path / "index.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(AdapterError):
            FileLocatorIndex(path)

    def test_file_format(self, tmp_path: Path) -> None:
        """The index is a JSON document with a records list."""
        path = tmp_path / "index.json"
        FileLocatorIndex(path).put(_record("doc-1", CID_V1))

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["records"][0]["id"] == "doc-1"
        assert data["records"][0]["locator"] == CID_V1


class TestResolveLocator:
    """Tests for resolve_locator."""

    @staticmethod
    def _parse(value: str) -> str | None:
        body = strip_scheme(value, "ipfs")
        return parse_cid_reference(value) if body is not None else None

    def test_logical_id_resolves_through_index(self) -> None:
        """Known ids map to their current locator."""
        index = InMemoryLocatorIndex()
        index.put(_record("doc-1", CID_V1))

        resolved = resolve_locator(index, "doc-1", self._parse)

        assert resolved is not None
        assert resolved.locator == CID_V1
        assert resolved.record is not None and resolved.record.id == "doc-1"

    def test_reference_and_bare_cid_resolve(self) -> None:
        """References and bare CIDs resolve even without an index entry."""
        index = InMemoryLocatorIndex()

        by_reference = resolve_locator(index, f"ipfs://{CID_V1}", self._parse)
        by_cid = resolve_locator(index, CID_V0, self._parse)

        assert by_reference is not None and by_reference.locator == CID_V1
        assert by_reference.record is None
        assert by_cid is not None and by_cid.locator == CID_V0

    def test_unknown_id_returns_none(self) -> None:
        """A bare string that is neither an id nor a CID is unknown."""
        assert resolve_locator(InMemoryLocatorIndex(), "missing", self._parse) is None

    def test_logical_id_checked_before_reference_parsing(self) -> None:
        """An id shaped like a reference resolves through the index, not the parser."""
        index = InMemoryLocatorIndex()
        index.put(_record("ipfs://x", CID_V1))

        resolved = resolve_locator(index, "ipfs://x", self._parse)

        assert resolved is not None
        assert resolved.locator == CID_V1
        assert resolved.record is not None and resolved.record.id == "ipfs://x"

    def test_malformed_reference_raises(self) -> None:
        """A scheme-prefixed reference with a bad CID is rejected."""
        with pytest.raises(InvalidReferenceError):
            resolve_locator(InMemoryLocatorIndex(), "ipfs://garbage", self._parse)

    def test_empty_value_raises(self) -> None:
        """Empty locators are invalid input."""
        with pytest.raises(InvalidConfigError):
            resolve_locator(InMemoryLocatorIndex(), "", self._parse)
