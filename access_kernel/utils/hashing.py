"""
Deterministic hashing utilities.

Access records form a tamper-evident chain: each record's hash covers its own
fields plus the previous record's hash.  Every hash in the kernel goes through
this module so the chain can be recomputed byte-for-byte later.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_HASH = "GENESIS"


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        # Normalise to UTC so the same instant always hashes the same
        if obj.tzinfo is not None:
            obj = obj.astimezone(timezone.utc)
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of enums, datetimes, UUIDs and sets
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_access_record(fields: dict, prev_hash: str | None) -> str:
    """
    Compute the chained hash of an access record.

    Args:
        fields: The record's persisted fields (excluding both hashes).
        prev_hash: Hash of the previous record by ``seq`` (None for genesis).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    data = "|".join([hash_payload(fields), prev_hash or GENESIS_HASH])
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
