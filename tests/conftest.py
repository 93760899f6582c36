"""Pytest configuration and fixtures for TACo Storage tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from taco_storage.adapters.memory import InMemoryAdapter
from taco_storage.config import TacoConfig
from taco_storage.core.local_encryption import LocalEncryptionService, generate_key
from taco_storage.core.storage import TacoStorage

FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)

TRACING_ENV_VARS = (
    "TACO_STORAGE_OTEL_ENABLED",
    "TACO_STORAGE_REQUIRE_OTEL",
    "TACO_STORAGE_OTEL_SERVICE_NAME",
    "TACO_STORAGE_OTEL_EXPORTER",
    "TACO_STORAGE_OTEL_EXPORTER_OTLP_ENDPOINT",
    "TACO_STORAGE_OTEL_TEST_CAPTURE",
)


class FrozenClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def tracing_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tracing off unless a test enables it explicitly."""
    for name in TRACING_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock() -> FrozenClock:
    """Return a clock frozen at FIXED_NOW."""
    return FrozenClock()


@pytest.fixture
def local_key() -> str:
    """Return a fresh base64 AES-256 key."""
    return generate_key()


@pytest.fixture
def taco_config(local_key: str) -> TacoConfig:
    """Return a config wired for the local encryption service."""
    return TacoConfig(domain="devnet", ritual_id=0, local_encryption_key=local_key)


@pytest.fixture
def encryption_service(taco_config: TacoConfig, clock: FrozenClock) -> LocalEncryptionService:
    """Return a local encryption service sharing the test clock."""
    return LocalEncryptionService.from_config(taco_config, clock=clock)


@pytest.fixture
def memory_storage(
    taco_config: TacoConfig,
    encryption_service: LocalEncryptionService,
    clock: FrozenClock,
) -> Iterator[TacoStorage]:
    """Return an initialized TacoStorage over an InMemoryAdapter."""
    storage = TacoStorage(
        InMemoryAdapter(),
        taco_config,
        encryption_service=encryption_service,
        clock=clock,
    )
    storage.initialize()
    yield storage
    storage.cleanup()


@pytest.fixture
def auth() -> dict[str, Any]:
    """Return an opaque auth principal."""
    return {"address": "0x" + "ab" * 20}


def fake_cid(content: bytes) -> str:
    """Return the CIDv1 (raw codec, sha2-256, base32) of ``content``."""
    raw_cid = b"\x01\x55\x12\x20" + hashlib.sha256(content).digest()
    return "b" + base64.b32encode(raw_cid).decode("ascii").lower().rstrip("=")


def multipart_parts(request: httpx.Request) -> dict[str, bytes]:
    """Split a multipart/form-data request body into {field name: content}."""
    boundary = request.headers["content-type"].split("boundary=", 1)[1].strip('"')
    body = request.read()
    parts: dict[str, bytes] = {}
    for chunk in body.split(b"--" + boundary.encode("ascii")):
        if not chunk.strip() or chunk.strip() == b"--":
            continue
        headers, _, content = chunk.partition(b"\r\n\r\n")
        name = headers.split(b'name="', 1)[1].split(b'"', 1)[0].decode("ascii")
        parts[name] = content[: -len(b"\r\n")] if content.endswith(b"\r\n") else content
    return parts


class FakeKuboNode:
    """In-process stand-in for the Kubo RPC API."""

    NODE_ID = "12D3KooWFakeNode"
    VERSION = "0.29.0"
    ADDRESSES = ["/ip4/127.0.0.1/tcp/4001"]

    def __init__(self) -> None:
        self.blocks: dict[str, bytes] = {}
        self.pinned: set[str] = set()
        self.requests: list[str] = []
        self.offline = False

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handle))

    def _error(self, message: str) -> httpx.Response:
        return httpx.Response(500, json={"Message": message, "Code": 0, "Type": "error"})

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("Connection refused")

        command = request.url.path.removeprefix("/api/v0/")
        self.requests.append(command)
        arg = request.url.params.get("arg", "")

        if command == "id":
            return httpx.Response(200, json={"ID": self.NODE_ID, "Addresses": self.ADDRESSES})
        if command == "version":
            return httpx.Response(200, json={"Version": self.VERSION})
        if command == "add":
            content = multipart_parts(request)["file"]
            cid = fake_cid(content)
            self.blocks[cid] = content
            if request.url.params.get("pin") == "true":
                self.pinned.add(cid)
            return httpx.Response(
                200, json={"Name": "data", "Hash": cid, "Size": str(len(content))}
            )
        if command == "cat":
            if arg not in self.blocks:
                return self._error(
                    f"block was not found locally (offline): ipld: could not find {arg}"
                )
            return httpx.Response(200, content=self.blocks[arg])
        if command == "pin/rm":
            if arg not in self.pinned:
                return self._error("not pinned or pinned indirectly")
            self.pinned.discard(arg)
            return httpx.Response(200, json={"Pins": [arg]})
        if command == "files/stat":
            cid = arg.removeprefix("/ipfs/")
            if cid not in self.blocks:
                return self._error(f"{arg}: merkledag: not found")
            return httpx.Response(200, json={"Hash": cid, "Size": len(self.blocks[cid])})
        return httpx.Response(404, text="404 page not found")


class FakePinataService:
    """In-process stand-in for the Pinata v3 API and a gateway."""

    JWT = "test-jwt"
    GATEWAY = "example.mypinata.cloud"

    def __init__(self) -> None:
        self.files: dict[str, tuple[str, bytes]] = {}
        self.uploads: list[dict[str, bytes]] = []
        self.offline = False
        self._next_id = 0

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handle))

    def _authorized(self, request: httpx.Request) -> bool:
        return request.headers.get("authorization") == f"Bearer {self.JWT}"

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("Connection refused")

        host, path, method = request.url.host, request.url.path, request.method

        if host == self.GATEWAY and method == "GET" and path.startswith("/ipfs/"):
            cid = path.removeprefix("/ipfs/")
            for file_cid, content in self.files.values():
                if file_cid == cid:
                    return httpx.Response(200, content=content)
            return httpx.Response(404, text="Not Found")

        if not self._authorized(request):
            return httpx.Response(401, json={"error": "Unauthorized"})

        if host == "uploads.pinata.cloud" and method == "POST" and path == "/v3/files":
            parts = multipart_parts(request)
            self.uploads.append(parts)
            self._next_id += 1
            file_id = f"file-{self._next_id}"
            cid = fake_cid(parts["file"])
            self.files[file_id] = (cid, parts["file"])
            return httpx.Response(
                200,
                json={"data": {"id": file_id, "cid": cid, "size": len(parts["file"])}},
            )

        if host == "api.pinata.cloud":
            if method == "GET" and path == "/data/testAuthentication":
                return httpx.Response(
                    200,
                    json={"message": "Congratulations! You are communicating with the Pinata API!"},
                )
            if method == "GET" and path == "/v3/files/public":
                cid = request.url.params.get("cid")
                matches = [
                    {"id": file_id, "cid": file_cid}
                    for file_id, (file_cid, _) in self.files.items()
                    if file_cid == cid
                ]
                return httpx.Response(
                    200, json={"data": {"files": matches, "next_page_token": None}}
                )
            if method == "DELETE" and path.startswith("/v3/files/public/"):
                file_id = path.removeprefix("/v3/files/public/")
                if self.files.pop(file_id, None) is None:
                    return httpx.Response(404, json={"error": "Not Found"})
                return httpx.Response(200, json={"data": None})

        return httpx.Response(404, json={"error": "Not Found"})


@pytest.fixture
def kubo_node() -> FakeKuboNode:
    """Return a fake Kubo node."""
    return FakeKuboNode()


@pytest.fixture
def pinata_service() -> FakePinataService:
    """Return a fake Pinata service."""
    return FakePinataService()
