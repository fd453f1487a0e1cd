"""
Access configuration schema.

Frozen dataclasses parsed from a YAML configuration set by
``access_config.loader``.  Pure data; the kernel never sees these types
directly -- ``access_config.bridges`` translates them into kernel inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class KindDefaults:
    """Credential defaults for one request kind.

    ``usage_limit`` None means unlimited.  ``validity_hours`` only applies
    to employees; visitor credentials expire at the end of the visit.
    """

    usage_limit: int | None
    validity_hours: int | None = None


@dataclass(frozen=True)
class CredentialDefaults:
    visitor: KindDefaults
    employee: KindDefaults
    code_bytes: int = 24
    default_access_level: str = "standard"
    time_window_seconds: int = 300


@dataclass(frozen=True)
class ValidationRules:
    phone_pattern: str
    id_document_pattern: str
    max_name_length: int = 100
    max_purpose_length: int = 500


@dataclass(frozen=True)
class BlacklistSeed:
    """Static blacklist entries shipped with the configuration set."""

    phones: tuple[str, ...] = ()
    names: tuple[str, ...] = ()


@dataclass(frozen=True)
class AccessConfig:
    """A loaded, validated configuration set."""

    config_id: str
    version: int
    credentials: CredentialDefaults
    validation: ValidationRules
    blacklist: BlacklistSeed = field(default_factory=BlacklistSeed)
    description: str = ""
    checksum: str = ""
    source: str = ""
