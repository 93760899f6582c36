"""Logical id to backend locator index.

Content-addressed backends derive their locator (a CID) from the bytes,
so callers cannot know it up front. Adapters for those backends keep an
index from the caller's logical id to the current locator, which lets every
adapter accept the logical id uniformly.

Backends:
- InMemoryLocatorIndex: process-local (default)
- FileLocatorIndex: JSON file with atomic replace-on-write
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from taco_storage.adapters.helpers import is_valid_cid, paginate, validate_id
from taco_storage.errors import AdapterError, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocatorRecord:
    """Index entry for one logical object.

    Attributes:
        id: Logical id supplied (or generated) at store time.
        locator: Backend locator currently holding the object (e.g. a CID).
        created_at: Store timestamp, used for list ordering.
        extra: Backend-specific values (e.g. a pinning-service file id).
    """

    id: str
    locator: str
    created_at: datetime
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "locator": self.locator,
            "created_at": self.created_at.isoformat(),
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocatorRecord:
        created_at = datetime.fromisoformat(str(data["created_at"]))
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        return cls(
            id=str(data["id"]),
            locator=str(data["locator"]),
            created_at=created_at,
            extra=dict(data.get("extra") or {}),
        )


def _ordered_ids(records: list[LocatorRecord]) -> list[str]:
    """Newest first; ties broken by id so pagination is stable."""
    by_id = sorted(records, key=lambda r: r.id)
    by_time = sorted(by_id, key=lambda r: r.created_at, reverse=True)
    return [r.id for r in by_time]


class LocatorIndex(ABC):
    """Mapping from logical id to LocatorRecord."""

    @abstractmethod
    def get(self, object_id: str) -> LocatorRecord | None: ...

    @abstractmethod
    def put(self, record: LocatorRecord) -> LocatorRecord | None:
        """Insert or replace a record. Returns the replaced record, if any."""
        ...

    @abstractmethod
    def remove(self, object_id: str) -> LocatorRecord | None:
        """Remove a record. Returns the removed record, or None if absent."""
        ...

    @abstractmethod
    def find_by_locator(self, locator: str) -> LocatorRecord | None:
        """Return the record currently pointing at ``locator``, if any."""
        ...

    @abstractmethod
    def list_ids(self, limit: int | None = None, offset: int | None = None) -> list[str]: ...

    @abstractmethod
    def count(self) -> int: ...

    def close(self) -> None:
        """Release resources held by the index."""
        return None


class InMemoryLocatorIndex(LocatorIndex):
    """Process-local index. Contents are lost when the process exits."""

    def __init__(self) -> None:
        self._records: dict[str, LocatorRecord] = {}
        self._lock = threading.Lock()

    def get(self, object_id: str) -> LocatorRecord | None:
        with self._lock:
            return self._records.get(object_id)

    def put(self, record: LocatorRecord) -> LocatorRecord | None:
        with self._lock:
            previous = self._records.get(record.id)
            self._records[record.id] = record
            return previous

    def remove(self, object_id: str) -> LocatorRecord | None:
        with self._lock:
            return self._records.pop(object_id, None)

    def find_by_locator(self, locator: str) -> LocatorRecord | None:
        with self._lock:
            for record in self._records.values():
                if record.locator == locator:
                    return record
        return None

    def list_ids(self, limit: int | None = None, offset: int | None = None) -> list[str]:
        with self._lock:
            ordered = _ordered_ids(list(self._records.values()))
        return paginate(ordered, limit, offset)

    def count(self) -> int:
        with self._lock:
            return len(self._records)


class FileLocatorIndex(InMemoryLocatorIndex):
    """Index persisted to a JSON file.

    The whole index is rewritten on every change via a temp file and an
    atomic rename, so readers never observe a partial file.
    """

    def __init__(self, path: str | Path) -> None:
        """Load the index from ``path`` (created on first write).

        Raises:
            AdapterError: If an existing file cannot be read or parsed.
        """
        super().__init__()
        self._path = Path(path).resolve()
        self._records = self._load()
        logger.debug(
            "FileLocatorIndex loaded: path=%s records=%d", self._path, len(self._records)
        )

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, LocatorRecord]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            records = [LocatorRecord.from_dict(item) for item in raw.get("records", [])]
        except (OSError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise AdapterError(
                f"Failed to load locator index: {e}", key=str(self._path), cause=e
            ) from e
        return {r.id: r for r in records}

    def _flush(self) -> None:
        """Write the index atomically. Caller must hold the lock."""
        payload = {"records": [r.to_dict() for r in self._records.values()]}
        tmp_file = self._path.with_name(f"{self._path.name}.{uuid.uuid4().hex}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_file.replace(self._path)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise StorageError(
                f"Failed to write locator index: {e}", key=str(self._path), cause=e
            ) from e

    def put(self, record: LocatorRecord) -> LocatorRecord | None:
        with self._lock:
            previous = self._records.get(record.id)
            self._records[record.id] = record
            try:
                self._flush()
            except StorageError:
                if previous is None:
                    self._records.pop(record.id, None)
                else:
                    self._records[record.id] = previous
                raise
            return previous

    def remove(self, object_id: str) -> LocatorRecord | None:
        with self._lock:
            removed = self._records.pop(object_id, None)
            if removed is not None:
                try:
                    self._flush()
                except StorageError:
                    self._records[object_id] = removed
                    raise
            return removed


@dataclass(frozen=True)
class ResolvedLocator:
    """Result of resolving a caller-supplied locator against an index.

    Attributes:
        locator: Backend locator to operate on (e.g. a CID).
        record: Index record for the object, if the index knows it.
    """

    locator: str
    record: LocatorRecord | None


def resolve_locator(
    index: LocatorIndex,
    value: str,
    parse_reference: Callable[[str], str | None],
) -> ResolvedLocator | None:
    """Resolve a logical id, full reference or bare CID, in that order.

    Args:
        index: Index mapping logical ids to locators.
        value: What the caller passed to retrieve/delete/exists.
        parse_reference: Returns the locator embedded in a backend
            reference, None if ``value`` is not such a reference, and
            raises InvalidReferenceError if it is one but malformed.

    Returns:
        The resolved locator, or None for an unknown id.
    """
    validate_id(value)
    record = index.get(value)
    if record is not None:
        return ResolvedLocator(locator=record.locator, record=record)

    embedded = parse_reference(value)
    if embedded is not None:
        return ResolvedLocator(locator=embedded, record=index.find_by_locator(embedded))

    if is_valid_cid(value):
        return ResolvedLocator(locator=value, record=index.find_by_locator(value))
    return None
