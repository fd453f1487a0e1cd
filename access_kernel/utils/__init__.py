"""Utility modules for the access kernel."""

from access_kernel.utils.hashing import (
    canonicalize_json,
    hash_access_record,
    hash_payload,
)

__all__ = [
    "canonicalize_json",
    "hash_access_record",
    "hash_payload",
]
