"""
Request domain types (``access_kernel.domain.request``).

Responsibility
--------------
Pure value objects for visitor and employee access requests: the request
lifecycle state machine, the submission draft, the approval decision terms,
and the immutable request snapshot returned by the workflow.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``REQUEST_TRANSITIONS`` defines the only valid status transitions and
  ``ensure_transition`` is the only place a status change is validated.
* Terminal states have no outgoing edges; nothing re-enters ``pending``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from access_kernel.exceptions import InvalidStateError

# =========================================================================
# Request Status Lifecycle
# =========================================================================


class RequestKind(str, Enum):
    """Who the request is for."""

    VISITOR = "visitor"
    EMPLOYEE = "employee"


class RequestStatus(str, Enum):
    """Request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.WITHDRAWN,
    }),
    RequestStatus.APPROVED: frozenset({
        RequestStatus.EXPIRED,
    }),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
    RequestStatus.WITHDRAWN: frozenset(),
}

TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset(
    status for status, targets in REQUEST_TRANSITIONS.items() if not targets
)

# Statuses that block a second request for the same phone/merchant/slot
OPEN_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PENDING,
    RequestStatus.APPROVED,
})


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in REQUEST_TRANSITIONS.get(current, frozenset())


def ensure_transition(
    request_id: UUID,
    current: RequestStatus | str,
    target: RequestStatus,
    attempted: str,
) -> None:
    """Raise ``InvalidStateError`` unless ``current -> target`` is legal.

    Args:
        request_id: Request being transitioned (for the error payload).
        current: Stored status.
        target: Desired status.
        attempted: Verb for the error message, e.g. ``"approve"``.
    """
    current = RequestStatus(current)
    if not can_transition(current, target):
        raise InvalidStateError(
            entity_type="Request",
            entity_id=str(request_id),
            current_status=current.value,
            attempted=attempted,
        )


# =========================================================================
# Submission and Decision Inputs
# =========================================================================


@dataclass(frozen=True)
class RequestDraft:
    """Input to ``ApprovalWorkflow.submit``.

    Visitors must carry a visit window; employees have standing access and
    leave both bounds unset.  Nothing here is validated on construction:
    ``access_kernel.domain.validation`` reports every problem at once.
    """

    kind: RequestKind
    requester_name: str
    contact_phone: str
    purpose: str
    merchant_id: UUID | None
    visit_start: datetime | None = None
    visit_end: datetime | None = None
    id_document: str | None = None
    company: str | None = None
    contact_person: str | None = None


@dataclass(frozen=True)
class ApprovalTerms:
    """What an approver grants along with an approval.

    ``access_level``, ``usage_limit`` and ``expires_at`` override the
    configured defaults for the request kind.  Use ``unlimited_usage=True``
    to grant an unlimited credential regardless of the default.
    """

    access_level: str | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)
    escort_required: bool = False
    notes: str = ""
    expires_at: datetime | None = None
    usage_limit: int | None = None
    unlimited_usage: bool = False
    expected_version: int | None = None


# =========================================================================
# Request Snapshot
# =========================================================================


@dataclass(frozen=True)
class AccessRequest:
    """Immutable snapshot of a stored request."""

    request_id: UUID
    kind: RequestKind
    requester_name: str
    contact_phone: str
    purpose: str
    merchant_id: UUID
    status: RequestStatus
    submitted_at: datetime
    version: int
    visit_start: datetime | None = None
    visit_end: datetime | None = None
    id_document: str | None = None
    company: str | None = None
    contact_person: str | None = None
    access_level: str | None = None
    escort_required: bool = False
    decided_by: UUID | None = None
    decision_notes: str | None = None
    decided_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES
