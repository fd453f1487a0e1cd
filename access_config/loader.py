"""
Configuration Loader (``access_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses of
``access_config.schema``.  Runtime callers use
``access_config.get_active_config()`` instead of calling this directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys or bad values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from access_config.schema import (
    AccessConfig,
    BlacklistSeed,
    CredentialDefaults,
    KindDefaults,
    ValidationRules,
)
from access_kernel.exceptions import ConfigurationError

UNLIMITED_TOKEN = "unlimited"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_usage_limit(value: Any, where: str) -> int | None:
    """``unlimited`` (or null) -> None; otherwise a non-negative int."""
    if value is None or value == UNLIMITED_TOKEN:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(where, [f"usage_limit must be an integer or '{UNLIMITED_TOKEN}'"])
    return value


def parse_kind_defaults(data: dict[str, Any], where: str) -> KindDefaults:
    return KindDefaults(
        usage_limit=parse_usage_limit(data.get("usage_limit"), where),
        validity_hours=data.get("validity_hours"),
    )


def parse_credentials(data: dict[str, Any], source: str) -> CredentialDefaults:
    return CredentialDefaults(
        visitor=parse_kind_defaults(data.get("visitor", {}), f"{source}:credentials.visitor"),
        employee=parse_kind_defaults(data.get("employee", {}), f"{source}:credentials.employee"),
        code_bytes=data.get("code_bytes", 24),
        default_access_level=data.get("default_access_level", "standard"),
        time_window_seconds=data.get("time_window_seconds", 300),
    )


def parse_validation(data: dict[str, Any]) -> ValidationRules:
    return ValidationRules(
        phone_pattern=data["phone_pattern"],
        id_document_pattern=data["id_document_pattern"],
        max_name_length=data.get("max_name_length", 100),
        max_purpose_length=data.get("max_purpose_length", 500),
    )


def parse_blacklist(data: dict[str, Any] | None) -> BlacklistSeed:
    data = data or {}
    return BlacklistSeed(
        phones=tuple(str(p) for p in data.get("phones") or ()),
        names=tuple(str(n) for n in data.get("names") or ()),
    )


def parse_config(data: dict[str, Any], source: str = "<memory>") -> AccessConfig:
    """Parse a raw YAML mapping into an ``AccessConfig``.

    Raises:
        ConfigurationError: required sections or keys are missing.
    """
    missing = [key for key in ("config_id", "credentials", "validation") if key not in data]
    if missing:
        raise ConfigurationError(source, [f"missing required key: {key}" for key in missing])

    try:
        validation = parse_validation(data["validation"])
    except KeyError as exc:
        raise ConfigurationError(source, [f"missing validation key: {exc.args[0]}"]) from exc

    return AccessConfig(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        description=data.get("description", ""),
        credentials=parse_credentials(data["credentials"], source),
        validation=validation,
        blacklist=parse_blacklist(data.get("blacklist")),
        checksum=compute_checksum(data),
        source=source,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
