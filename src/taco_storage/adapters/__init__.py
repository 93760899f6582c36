"""TACo Storage backend adapters.

Backends:
- InMemoryAdapter: process memory (dev/test)
- SQLiteAdapter: local SQLite database via SQLAlchemy
- KuboAdapter: external Kubo IPFS node over its RPC API
- PinataAdapter: Pinata pinning service
"""

from taco_storage.adapters.base import StorageAdapter, SupportsList
from taco_storage.adapters.index import (
    FileLocatorIndex,
    InMemoryLocatorIndex,
    LocatorIndex,
    LocatorRecord,
)
from taco_storage.adapters.kubo import KuboAdapter
from taco_storage.adapters.memory import InMemoryAdapter
from taco_storage.adapters.pinata import PinataAdapter
from taco_storage.adapters.sqlite import SQLiteAdapter

__all__ = [
    "StorageAdapter",
    "SupportsList",
    "LocatorIndex",
    "LocatorRecord",
    "InMemoryLocatorIndex",
    "FileLocatorIndex",
    "InMemoryAdapter",
    "SQLiteAdapter",
    "KuboAdapter",
    "PinataAdapter",
]
