"""
Access event domain types (``access_kernel.domain.access``).

Responsibility
--------------
Value objects for what happens at a checkpoint: the event kinds, outcomes,
denial reasons, the append-only ``AccessRecord`` snapshot, the
``VerificationResult`` returned by the gate, and pure entry/exit pairing.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Verification failures are values (``DenialReason``), never exceptions.
* ``compute_duration`` only pairs an entry with a later exit of the same
  credential.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from access_kernel.exceptions import InvalidPairError

if TYPE_CHECKING:
    from access_kernel.domain.credential import Credential


class AccessEvent(str, Enum):
    """Direction of a checkpoint pass."""

    ENTRY = "entry"
    EXIT = "exit"


class AccessOutcome(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


class DenialReason(str, Enum):
    """Why a verification was denied.

    ``SYSTEM_ERROR`` is reserved for internal failures; the gate never lets
    an exception reach the checkpoint.
    """

    UNKNOWN_CREDENTIAL = "unknown-credential"
    EXPIRED = "expired"
    REVOKED = "revoked"
    USAGE_EXHAUSTED = "usage-exhausted"
    ESCORT_REQUIRED = "escort-required"
    SYSTEM_ERROR = "system-error"


class AccessAnomaly(str, Enum):
    UNMATCHED_EXIT = "unmatched-exit"


class AccessMethod(str, Enum):
    """Common capture methods.  The gate accepts any method string."""

    QR_SCAN = "qr_scan"
    MANUAL_LOOKUP = "manual_lookup"
    NFC = "nfc"
    FACE = "face"


# Presented codes are stored for security review, not for lookup.
PRESENTED_CODE_MAX_LENGTH = 128

# Capture methods are free-form; longer values are cut to fit the column.
METHOD_MAX_LENGTH = 50


@dataclass(frozen=True)
class AccessRecord:
    """Immutable snapshot of one persisted checkpoint event."""

    record_id: UUID
    seq: int
    event: AccessEvent
    method: str
    outcome: AccessOutcome
    actor_id: UUID
    occurred_at: datetime
    record_hash: str
    credential_id: UUID | None = None
    request_id: UUID | None = None
    presented_code: str | None = None
    denial_reason: DenialReason | None = None
    escort_id: UUID | None = None
    paired_entry_id: UUID | None = None
    duration_seconds: int | None = None
    anomaly: AccessAnomaly | None = None
    prev_hash: str | None = None

    @property
    def granted(self) -> bool:
        return self.outcome == AccessOutcome.GRANTED


@dataclass(frozen=True)
class VerificationResult:
    """What the gate tells the checkpoint.

    ``credential`` is the credential as it stood after the call (None for an
    unknown code).  ``duration`` is only set for exits paired with an entry.
    """

    outcome: AccessOutcome
    record_id: UUID | None
    reason: DenialReason | None = None
    credential: Credential | None = None
    duration: timedelta | None = None
    anomaly: AccessAnomaly | None = None

    @property
    def granted(self) -> bool:
        return self.outcome == AccessOutcome.GRANTED

    @property
    def duration_seconds(self) -> float | None:
        if self.duration is None:
            return None
        return self.duration.total_seconds()


@dataclass(frozen=True)
class AccessStats:
    """Aggregate verification counts over a window."""

    total: int
    granted: int
    denied: int
    entries: int
    exits: int
    denial_reasons: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        """Share of granted verifications, 0.0 when nothing happened."""
        if self.total == 0:
            return 0.0
        return self.granted / self.total


def compute_duration(entry: AccessRecord, exit: AccessRecord) -> timedelta:
    """Time spent inside between a granted entry and a later exit.

    Raises:
        InvalidPairError: Wrong event kinds, different credentials, or the
            exit precedes the entry.
    """
    entry_id = str(entry.record_id)
    exit_id = str(exit.record_id)

    if entry.event != AccessEvent.ENTRY or exit.event != AccessEvent.EXIT:
        raise InvalidPairError(
            entry_id, exit_id,
            f"expected entry/exit, got {entry.event.value}/{exit.event.value}",
        )
    if entry.credential_id is None or entry.credential_id != exit.credential_id:
        raise InvalidPairError(entry_id, exit_id, "records belong to different credentials")

    duration = exit.occurred_at - entry.occurred_at
    if duration < timedelta(0):
        raise InvalidPairError(entry_id, exit_id, "exit occurred before entry")
    return duration
