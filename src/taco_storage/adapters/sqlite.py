"""SQLite storage adapter.

Keyed backend: objects are addressed by their logical id. Two tables are
used, one row each per object:

    items      key, content_type, size, created_at, message_kit,
               conditions, metadata
    item_data  key -> items.key ON DELETE CASCADE, encrypted_data

References have the form ``sqlite://<database path>#<id>``; retrieve,
delete and exists accept either the reference or the bare id, and a stored
id is matched before the value is read as a reference. The in-memory
database shares one connection, so its use is serialized by a lock.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import AbstractContextManager, nullcontext
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import URL, create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from taco_storage.adapters.base import StorageAdapter
from taco_storage.adapters.helpers import (
    format_reference,
    page_bounds,
    strip_scheme,
    validate_data,
    validate_id,
)
from taco_storage.adapters.tracing import traced_adapter_operation
from taco_storage.config import SQLiteAdapterConfig
from taco_storage.errors import (
    AdapterError,
    InvalidReferenceError,
    NotFoundError,
    RetrievalError,
    StorageError,
    TacoStorageError,
)
from taco_storage.models import (
    EncryptionMetadata,
    HealthStatus,
    StorageMetadata,
    StorageResult,
    StoredPayload,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

SQLITE_SCHEME = "sqlite"
MEMORY_DATABASE = ":memory:"

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS items (
        key TEXT PRIMARY KEY,
        content_type TEXT NOT NULL,
        size INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        message_kit BLOB NOT NULL,
        conditions TEXT NOT NULL,
        metadata TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS item_data (
        key TEXT PRIMARY KEY,
        encrypted_data BLOB NOT NULL,
        FOREIGN KEY (key) REFERENCES items (key) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_created_at ON items(created_at)",
)


def _format_created_at(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    # Fixed width so lexical order matches chronological order.
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SQLiteAdapter(StorageAdapter):
    """SQLite storage adapter built on a SQLAlchemy engine."""

    def __init__(self, config: SQLiteAdapterConfig | None = None) -> None:
        self._config = config or SQLiteAdapterConfig()
        self._engine: Engine | None = None
        self._closed = False
        # An in-memory database is one shared connection; serialize its use.
        self._lock = threading.RLock() if self._config.database_path == MEMORY_DATABASE else None

    @property
    def backend_name(self) -> str:
        return "sqlite"

    @property
    def database_path(self) -> str:
        return self._config.database_path

    def _create_engine(self) -> Engine:
        timeout = self._config.timeout_seconds
        if self._config.database_path == MEMORY_DATABASE:
            engine = create_engine(
                "sqlite://",
                poolclass=StaticPool,
                connect_args={"check_same_thread": False, "timeout": timeout},
            )
        else:
            engine = create_engine(
                URL.create("sqlite", database=self._config.database_path),
                connect_args={"timeout": timeout},
            )

        busy_timeout_ms = int(timeout * 1000)
        enable_wal = self._config.enable_wal

        @event.listens_for(engine, "connect")
        def _configure_connection(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.execute("PRAGMA synchronous = NORMAL")
            cursor.execute("PRAGMA temp_store = MEMORY")
            cursor.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
            if enable_wal:
                cursor.execute("PRAGMA journal_mode = WAL")
            cursor.close()

        return engine

    def _ensure_engine(self) -> Engine:
        if self._engine is None:
            raise AdapterError("SQLite adapter not initialized. Call initialize() first.")
        return self._engine

    def _guard(self) -> AbstractContextManager[Any]:
        return self._lock if self._lock is not None else nullcontext()

    @staticmethod
    def _has_key(conn: Connection, key: str) -> bool:
        row = conn.execute(text("SELECT 1 FROM items WHERE key = :key"), {"key": key}).first()
        return row is not None

    def _resolve(self, conn: Connection, locator: str) -> str:
        """Map a bare id or a reference to this database to the row key.

        A stored key is matched first, so ids shaped like references stay
        addressable. Otherwise the exact ``sqlite://<path>#`` prefix of this
        database is stripped.

        Raises:
            InvalidReferenceError: If the value is an unknown ``sqlite://``
                reference that does not name an id in this database.
        """
        validate_id(locator)
        if self._has_key(conn, locator):
            return locator
        if strip_scheme(locator, SQLITE_SCHEME) is None:
            return locator
        prefix = self.generate_reference("")
        object_id = locator[len(prefix) :] if locator.startswith(prefix) else ""
        if not object_id:
            raise InvalidReferenceError("Reference does not belong to this database", key=locator)
        return object_id

    def generate_reference(self, object_id: str) -> str:
        return format_reference(SQLITE_SCHEME, self._config.database_path, object_id)

    def initialize(self) -> None:
        """Create the engine, apply pragmas and create the schema.

        Raises:
            AdapterError: If the adapter was cleaned up or the database
                cannot be opened.
        """
        if self._closed:
            raise AdapterError("Database is closed")
        if self._engine is not None:
            return

        try:
            engine = self._create_engine()
            with self._guard(), engine.begin() as conn:
                for statement in _SCHEMA_STATEMENTS:
                    conn.execute(text(statement))
        except SQLAlchemyError as e:
            raise AdapterError(
                f"Failed to initialize SQLite database: {e}", cause=e
            ) from e

        self._engine = engine
        logger.info("SQLite adapter initialized: path=%s", self._config.database_path)

    @traced_adapter_operation("store")
    def store(self, encrypted_data: bytes, metadata: StorageMetadata) -> StorageResult:
        engine = self._ensure_engine()
        validate_data(encrypted_data)

        try:
            with self._guard(), engine.begin() as conn:
                conn.execute(
                    text(
                        """
                        INSERT OR REPLACE INTO items (
                            key, content_type, size, created_at,
                            message_kit, conditions, metadata
                        ) VALUES (
                            :key, :content_type, :size, :created_at,
                            :message_kit, :conditions, :metadata
                        )
                        """
                    ),
                    {
                        "key": metadata.id,
                        "content_type": metadata.content_type,
                        "size": metadata.size,
                        "created_at": _format_created_at(metadata.created_at),
                        "message_kit": metadata.encryption_metadata.message_kit,
                        "conditions": json.dumps(metadata.encryption_metadata.conditions),
                        "metadata": (
                            json.dumps(metadata.metadata) if metadata.metadata is not None else None
                        ),
                    },
                )
                conn.execute(
                    text(
                        """
                        INSERT OR REPLACE INTO item_data (key, encrypted_data)
                        VALUES (:key, :encrypted_data)
                        """
                    ),
                    {"key": metadata.id, "encrypted_data": bytes(encrypted_data)},
                )
        except (SQLAlchemyError, TypeError, ValueError) as e:
            raise StorageError(
                f"Failed to store data in SQLite: {e}", key=metadata.id, cause=e
            ) from e

        logger.debug("Stored object in SQLite: id=%s size=%d", metadata.id, len(encrypted_data))
        return StorageResult(
            id=metadata.id,
            reference=self.generate_reference(metadata.id),
            metadata=metadata,
        )

    @traced_adapter_operation("retrieve")
    def retrieve(self, locator: str) -> StoredPayload:
        engine = self._ensure_engine()
        object_id = locator

        try:
            with self._guard(), engine.connect() as conn:
                object_id = self._resolve(conn, locator)
                row = conn.execute(
                    text(
                        """
                        SELECT i.key, i.content_type, i.size, i.created_at,
                               i.message_kit, i.conditions, i.metadata,
                               d.encrypted_data
                        FROM items i
                        LEFT JOIN item_data d ON i.key = d.key
                        WHERE i.key = :key
                        """
                    ),
                    {"key": object_id},
                ).first()
        except SQLAlchemyError as e:
            raise RetrievalError(
                f"Failed to retrieve data from SQLite: {e}", key=object_id, cause=e
            ) from e

        if row is None:
            raise NotFoundError(f"Data not found for ID: {object_id}", key=object_id)

        try:
            return self._row_to_payload(row._mapping)
        except TacoStorageError:
            raise
        except (TypeError, ValueError) as e:
            raise RetrievalError(
                f"Stored row is malformed: {e}", key=object_id, cause=e
            ) from e

    def _row_to_payload(self, row: Any) -> StoredPayload:
        if row["encrypted_data"] is None:
            raise RetrievalError("Encrypted payload missing for stored item", key=row["key"])

        created_at = datetime.fromisoformat(row["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)

        metadata = StorageMetadata(
            id=row["key"],
            content_type=row["content_type"],
            size=int(row["size"]),
            created_at=created_at,
            encryption_metadata=EncryptionMetadata(
                message_kit=bytes(row["message_kit"]),
                conditions=json.loads(row["conditions"]),
            ),
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        )
        return StoredPayload(encrypted_data=bytes(row["encrypted_data"]), metadata=metadata)

    @traced_adapter_operation("delete")
    def delete(self, locator: str) -> bool:
        engine = self._ensure_engine()
        object_id = locator

        try:
            with self._guard(), engine.begin() as conn:
                object_id = self._resolve(conn, locator)
                result = conn.execute(
                    text("DELETE FROM items WHERE key = :key"), {"key": object_id}
                )
                deleted = result.rowcount > 0
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to delete data from SQLite: {e}", key=object_id, cause=e
            ) from e

        logger.debug("Delete from SQLite: id=%s deleted=%s", object_id, deleted)
        return deleted

    @traced_adapter_operation("exists")
    def exists(self, locator: str) -> bool:
        engine = self._ensure_engine()
        try:
            with self._guard(), engine.connect() as conn:
                return self._has_key(conn, self._resolve(conn, locator))
        except TacoStorageError:
            return False
        except SQLAlchemyError as e:
            logger.warning("SQLite existence check failed for id=%s: %s", locator, e)
            return False

    @traced_adapter_operation("list")
    def list(self, limit: int | None = None, offset: int | None = None) -> list[str]:
        engine = self._ensure_engine()
        limit, offset = page_bounds(limit, offset)

        try:
            with self._guard(), engine.connect() as conn:
                rows = conn.execute(
                    text(
                        """
                        SELECT key FROM items
                        ORDER BY created_at DESC, key ASC
                        LIMIT :limit OFFSET :offset
                        """
                    ),
                    {"limit": limit, "offset": offset},
                ).all()
        except SQLAlchemyError as e:
            raise RetrievalError(f"Failed to list data from SQLite: {e}", cause=e) from e

        return [row[0] for row in rows]

    def get_health(self) -> HealthStatus:
        details: dict[str, Any] = {"databasePath": self._config.database_path}
        if self._engine is None:
            details["error"] = "SQLite adapter not initialized"
            return HealthStatus(healthy=False, details=details)

        try:
            with self._guard(), self._engine.connect() as conn:
                count = conn.execute(text("SELECT COUNT(*) FROM items")).scalar_one()
                integrity = conn.execute(text("PRAGMA integrity_check")).scalar_one()
        except SQLAlchemyError as e:
            details["error"] = str(e)
            return HealthStatus(healthy=False, details=details)

        details["recordCount"] = int(count)
        details["integrityCheck"] = integrity
        return HealthStatus(healthy=integrity == "ok", details=details)

    def cleanup(self) -> None:
        """Dispose of the engine. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("SQLite adapter closed: path=%s", self._config.database_path)
