"""Results returned by approval operations, single and batch."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from access_kernel.domain.credential import Credential
from access_kernel.domain.request import AccessRequest


@dataclass(frozen=True)
class ApprovalResult:
    """An approved request together with the credential minted for it."""

    request: AccessRequest
    credential: Credential


@dataclass(frozen=True)
class BatchItemResult:
    """Outcome for one request id in a batch.

    On failure ``error_code`` is the ``code`` of the caught kernel exception.
    """

    request_id: UUID
    success: bool
    request: AccessRequest | None = None
    credential: Credential | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class BatchResult:
    """Results keyed by request id, in input order."""

    items: dict[UUID, BatchItemResult] = field(default_factory=dict)

    def __getitem__(self, request_id: UUID) -> BatchItemResult:
        return self.items[request_id]

    def __len__(self) -> int:
        return len(self.items)

    @property
    def succeeded(self) -> tuple[UUID, ...]:
        return tuple(rid for rid, item in self.items.items() if item.success)

    @property
    def failed(self) -> tuple[UUID, ...]:
        return tuple(rid for rid, item in self.items.items() if not item.success)

    @property
    def all_succeeded(self) -> bool:
        return all(item.success for item in self.items.values())
