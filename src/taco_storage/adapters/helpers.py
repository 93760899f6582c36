"""Shared validation and reference helpers for storage adapters.

Adapters compose these functions rather than inheriting them. References
have the shape ``<scheme>://<locator>[#<fragment>]``; only the scheme prefix
is parsed, since ids and paths may themselves contain ``#``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TypeVar

from multiformats import CID

from taco_storage.errors import InvalidConfigError, InvalidReferenceError, StorageError

T = TypeVar("T")

DEFAULT_LIST_LIMIT = 100
IPFS_SCHEME = "ipfs"

# CIDv0 (base58btc "Qm...") or a CIDv1 in base32, base36, base58btc or base16.
_CID_SHAPE = re.compile(
    r"^(Qm[1-9A-HJ-NP-Za-km-z]{44}"
    r"|b[a-z2-7]{40,}|B[A-Z2-7]{40,}|k[0-9a-z]{40,}"
    r"|z[1-9A-HJ-NP-Za-km-z]{40,}|f[0-9a-f]{40,})$"
)


def validate_id(object_id: str) -> None:
    """Raise if an id or locator is not a non-empty string."""
    if not isinstance(object_id, str) or not object_id.strip():
        raise InvalidConfigError("Invalid ID: must be a non-empty string")


def validate_data(data: bytes) -> None:
    """Raise if an encrypted payload is not non-empty bytes."""
    if not isinstance(data, (bytes, bytearray, memoryview)) or len(data) == 0:
        raise StorageError("Invalid data: must be non-empty bytes")


def format_reference(scheme: str, locator: str, fragment: str | None = None) -> str:
    """Build ``scheme://locator`` with an optional ``#fragment``."""
    reference = f"{scheme}://{locator}"
    if fragment is not None:
        reference = f"{reference}#{fragment}"
    return reference


def strip_scheme(reference: str, scheme: str) -> str | None:
    """Return the body of a ``scheme://`` reference.

    The body is returned whole; ``#`` is not treated as a separator
    because ids and paths may contain it.

    Returns:
        None if the reference does not carry the scheme prefix.
    """
    prefix = f"{scheme}://"
    if not reference.startswith(prefix):
        return None
    return reference[len(prefix) :]


def is_valid_cid(value: str) -> bool:
    """Check whether a string parses as a CIDv0 or CIDv1."""
    if not value or not _CID_SHAPE.match(value):
        return False
    try:
        CID.decode(value)
    except (ValueError, KeyError, TypeError, IndexError):
        return False
    return True


def parse_cid_reference(reference: str) -> str:
    """Extract and validate the CID from ``ipfs://<cid>`` or a bare CID.

    Raises:
        InvalidReferenceError: If the value is not a valid CID.
    """
    cid = strip_scheme(reference, IPFS_SCHEME)
    if cid is None:
        cid = reference
    if not is_valid_cid(cid):
        raise InvalidReferenceError("Invalid IPFS reference format", key=reference)
    return cid


def page_bounds(limit: int | None, offset: int | None) -> tuple[int, int]:
    """Apply list() defaults and validate.

    Raises:
        InvalidConfigError: If limit or offset is negative.
    """
    limit = DEFAULT_LIST_LIMIT if limit is None else limit
    offset = 0 if offset is None else offset
    if limit < 0 or offset < 0:
        raise InvalidConfigError("limit and offset must be >= 0")
    return limit, offset


def paginate(items: Sequence[T], limit: int | None, offset: int | None) -> list[T]:
    """Slice a sequence for list(limit, offset)."""
    limit, offset = page_bounds(limit, offset)
    return list(items[offset : offset + limit])
