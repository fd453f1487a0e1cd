"""
Credential domain types (``access_kernel.domain.credential``).

Responsibility
--------------
The credential snapshot, issuance terms, the issuance policy defaults, and
the usability predicate the verification gate evaluates on every call.

Architecture position
---------------------
**Kernel domain layer** -- pure functions and value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``usage_count <= usage_limit`` unless the limit is ``UNLIMITED``.
* Stored ``status`` is a cache: an ``active`` credential past
  ``expires_at`` is expired, whatever the row says.
* Denial precedence: revoked, then expired, then usage-exhausted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Final, Protocol
from uuid import UUID

from access_kernel.domain.access import DenialReason

# Sentinel for an unmetered credential.  Stored as NULL.
UNLIMITED: Final = None

# Permission names with meaning to the gate
STANDARD_ACCESS: Final = "standard"
ESCORT_REQUIRED: Final = "escort-required"

# Revoke reason recorded on a credential replaced by ``refresh``
SUPERSEDED_REASON: Final = "superseded"


class CredentialStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class UsageBounded(Protocol):
    """Anything shaped like a credential (DTO or ORM row)."""

    status: str
    expires_at: datetime
    usage_limit: int | None
    usage_count: int
    superseded_at: datetime | None


@dataclass(frozen=True)
class CredentialTerms:
    """Bounds and permissions for a credential about to be minted."""

    expires_at: datetime
    usage_limit: int | None = UNLIMITED
    permissions: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class CredentialPolicy:
    """Default issuance terms per request kind.

    Built from configuration by ``access_config.bridges``; the defaults here
    match the shipped configuration set.
    """

    visitor_usage_limit: int | None = 5
    employee_usage_limit: int | None = UNLIMITED
    employee_validity: timedelta = timedelta(hours=720)
    code_bytes: int = 24
    default_access_level: str = STANDARD_ACCESS


@dataclass(frozen=True)
class Credential:
    """Immutable snapshot of a stored credential."""

    credential_id: UUID
    request_id: UUID
    code: str
    status: CredentialStatus
    issued_at: datetime
    expires_at: datetime
    usage_limit: int | None
    usage_count: int
    version: int
    permissions: frozenset[str] = field(default_factory=frozenset)
    superseded_at: datetime | None = None
    superseded_by: UUID | None = None
    revoked_at: datetime | None = None
    revoked_by: UUID | None = None
    revoke_reason: str | None = None

    @property
    def is_unlimited(self) -> bool:
        return self.usage_limit is UNLIMITED

    @property
    def remaining_uses(self) -> int | None:
        if self.usage_limit is UNLIMITED:
            return None
        return max(self.usage_limit - self.usage_count, 0)

    @property
    def requires_escort(self) -> bool:
        return ESCORT_REQUIRED in self.permissions


def denial_reason(credential: UsageBounded, now: datetime) -> DenialReason | None:
    """First reason the credential cannot admit an entry, or None.

    A superseded credential is revoked for verification purposes even when
    its cached status has not caught up.
    """
    if credential.status == CredentialStatus.REVOKED or credential.superseded_at is not None:
        return DenialReason.REVOKED
    if credential.status == CredentialStatus.EXPIRED or now >= credential.expires_at:
        return DenialReason.EXPIRED
    if (
        credential.usage_limit is not UNLIMITED
        and credential.usage_count >= credential.usage_limit
    ):
        return DenialReason.USAGE_EXHAUSTED
    return None


def is_usable(credential: UsageBounded, now: datetime) -> bool:
    """True when an entry could be granted right now.  Recomputed every call."""
    return denial_reason(credential, now) is None


def effective_status(credential: UsageBounded, now: datetime) -> CredentialStatus:
    """Derived status; usage exhaustion leaves a credential ``active``."""
    reason = denial_reason(credential, now)
    if reason == DenialReason.REVOKED:
        return CredentialStatus.REVOKED
    if reason == DenialReason.EXPIRED:
        return CredentialStatus.EXPIRED
    return CredentialStatus.ACTIVE


def validate_terms(terms: CredentialTerms, issued_at: datetime) -> dict[str, str]:
    """Field errors for issuance terms (empty dict when valid)."""
    errors: dict[str, str] = {}
    if terms.expires_at.tzinfo is None:
        errors["expires_at"] = "must be timezone-aware"
    elif terms.expires_at <= issued_at:
        errors["expires_at"] = "must be after the issuance time"
    if terms.usage_limit is not UNLIMITED:
        if isinstance(terms.usage_limit, bool) or not isinstance(terms.usage_limit, int):
            errors["usage_limit"] = "must be a non-negative integer or UNLIMITED"
        elif terms.usage_limit < 0:
            errors["usage_limit"] = "must be a non-negative integer or UNLIMITED"
    return errors


@dataclass(frozen=True)
class CredentialStatistics:
    """Counts of credentials by derived state at a point in time.

    ``superseded`` credentials are counted there and nowhere else;
    ``usage_exhausted`` is a subset of ``active``.
    """

    total: int = 0
    active: int = 0
    expired: int = 0
    revoked: int = 0
    superseded: int = 0
    usage_exhausted: int = 0
