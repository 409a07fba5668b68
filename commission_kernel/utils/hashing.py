"""
Deterministic hashing utilities.

All checksums in the commission engine (rule versions, calculation results,
export shapes, config documents) go through the functions here so that one
digest algorithm and one canonical JSON form are used everywhere.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so 1.50 and 1.5 hash identically
        return str(obj.normalize())
    if hasattr(obj, "to_decimal"):
        return str(obj.to_decimal().normalize())
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, there is no whitespace, and Decimal/datetime/UUID are
    rendered consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def sha256_hex(text: str) -> str:
    """Hex-encoded SHA-256 of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict | list) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    return sha256_hex(canonicalize_json(payload))


def hash_rows(rows: list[dict]) -> str:
    """
    Compute the order-independent checksum of a list of row objects.

    Each row is serialized canonically, the serialized rows are sorted,
    joined with newlines and hashed.  Two row sets with the same content
    produce the same checksum regardless of the order they were computed in.
    """
    serialized = sorted(canonicalize_json(row) for row in rows)
    return sha256_hex("\n".join(serialized))


def fingerprint(payload: dict, length: int = 16) -> str:
    """Short prefix of ``hash_payload`` for log correlation."""
    return hash_payload(payload)[:length]
