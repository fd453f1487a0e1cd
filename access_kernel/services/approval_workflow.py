"""
access_kernel.services.approval_workflow -- Request lifecycle management.

Responsibility:
    Accepts visitor and employee requests, records staff decisions, lets
    requesters withdraw, and moves approved visitor requests to ``expired``
    once their window closes.  Approval and credential issuance happen in
    one savepoint.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.  Delegates
    credential minting to CredentialService.

Invariants enforced:
    - Every status change goes through ``domain.request.ensure_transition``.
    - Approval is atomic: the request is ``approved`` and owns exactly one
      current credential, or neither change is visible.
    - Batch items are independent; one failure never rolls back another.

Failure modes:
    - ValidationError, BlacklistedError, DuplicateRequestError on submit.
    - RequestNotFoundError for unknown ids.
    - InvalidStateError on illegal transitions.
    - AuthorizationError when the actor lacks rights for the merchant, or
      the withdraw token does not match.
    - ConflictError when ``expected_version`` is stale.
"""

from __future__ import annotations

import hmac
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from access_kernel.domain.clock import Clock, SystemClock
from access_kernel.domain.collaborators import ActorDirectory, Blacklist
from access_kernel.domain.credential import (
    ESCORT_REQUIRED,
    CredentialStatus,
    CredentialTerms,
    validate_terms,
)
from access_kernel.domain.request import (
    OPEN_REQUEST_STATUSES,
    AccessRequest,
    ApprovalTerms,
    RequestDraft,
    RequestKind,
    RequestStatus,
    ensure_transition,
)
from access_kernel.domain.results import ApprovalResult, BatchItemResult, BatchResult
from access_kernel.domain.validation import DraftRules, validate_draft
from access_kernel.exceptions import (
    AccessKernelError,
    AuthorizationError,
    BlacklistedError,
    ConflictError,
    DuplicateRequestError,
    RequestNotFoundError,
    ValidationError,
)
from access_kernel.logging_config import LogContext, get_logger
from access_kernel.models.credential import CredentialModel
from access_kernel.models.request import AccessRequestModel
from access_kernel.services.credential_service import CredentialService

logger = get_logger("services.approval")


class ApprovalWorkflow:
    """Drives requests from submission to a terminal state.

    Collaborators (blacklist, actor directory, clock) are injected; the
    workflow flushes but never commits.
    """

    def __init__(
        self,
        session: Session,
        credentials: CredentialService,
        blacklist: Blacklist,
        actors: ActorDirectory,
        clock: Clock | None = None,
        draft_rules: DraftRules | None = None,
    ) -> None:
        self._session = session
        self._credentials = credentials
        self._blacklist = blacklist
        self._actors = actors
        self._clock = clock or SystemClock()
        self._draft_rules = draft_rules or DraftRules()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, draft: RequestDraft) -> AccessRequest:
        """Validate and store a new ``pending`` request."""
        now = self._clock.now()
        validate_draft(draft, now, self._draft_rules)

        name = draft.requester_name.strip()
        phone = draft.contact_phone.strip()
        kind = RequestKind(draft.kind)

        if self._blacklist.is_blacklisted(name, phone):
            logger.warning(
                "request_blacklisted",
                extra={"merchant_id": str(draft.merchant_id), "kind": kind.value},
            )
            raise BlacklistedError(name, phone)

        existing = self._find_open_duplicate(kind, phone, draft.merchant_id, draft.visit_start)
        if existing is not None:
            raise DuplicateRequestError(phone, str(draft.merchant_id), str(existing.request_id))

        model = AccessRequestModel(
            request_id=uuid4(),
            kind=kind.value,
            requester_name=name,
            contact_phone=phone,
            id_document=draft.id_document.strip() if draft.id_document else None,
            company=draft.company.strip() if draft.company else None,
            purpose=draft.purpose.strip(),
            merchant_id=draft.merchant_id,
            contact_person=draft.contact_person.strip() if draft.contact_person else None,
            visit_start=draft.visit_start,
            visit_end=draft.visit_end,
            status=RequestStatus.PENDING.value,
            escort_required=False,
            submitted_at=now,
            version=1,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "request_submitted",
            extra={
                "request_id": str(model.request_id),
                "kind": kind.value,
                "merchant_id": str(model.merchant_id),
            },
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def approve(
        self,
        request_id: UUID,
        actor_id: UUID,
        terms: ApprovalTerms | None = None,
    ) -> ApprovalResult:
        """Approve a pending request and mint its credential atomically."""
        terms = terms or ApprovalTerms()

        with LogContext.bind(actor_id=actor_id, request_id=request_id):
            model = self._load(request_id, for_update=True)
            self._authorize_decision(actor_id, model.merchant_id, "approve request")
            self._check_version(model, terms.expected_version)
            ensure_transition(request_id, model.status, RequestStatus.APPROVED, "approve")

            now = self._clock.now()
            access_level = terms.access_level or self._credentials.policy.default_access_level
            credential_terms = self._credential_terms(model, terms, access_level, now)
            errors = validate_terms(credential_terms, now)
            if errors:
                raise ValidationError(errors)

            with self._session.begin_nested():
                model.status = RequestStatus.APPROVED.value
                model.decided_by = actor_id
                model.decided_at = now
                model.decision_notes = terms.notes.strip() or None
                model.access_level = access_level
                model.escort_required = terms.escort_required
                model.version += 1
                self._session.flush()
                credential = self._credentials.issue(request_id, credential_terms)

            logger.info(
                "request_approved",
                extra={
                    "request_id": str(request_id),
                    "decided_by": str(actor_id),
                    "credential_id": str(credential.credential_id),
                    "access_level": access_level,
                    "escort_required": terms.escort_required,
                },
            )
            return ApprovalResult(request=model.to_dto(), credential=credential)

    def reject(
        self,
        request_id: UUID,
        actor_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> AccessRequest:
        """Reject a pending request.  ``reason`` must not be blank."""
        if not reason or not reason.strip():
            raise ValidationError({"reason": "is required"})

        model = self._load(request_id, for_update=True)
        self._authorize_decision(actor_id, model.merchant_id, "reject request")
        self._check_version(model, expected_version)
        ensure_transition(request_id, model.status, RequestStatus.REJECTED, "reject")

        model.status = RequestStatus.REJECTED.value
        model.decided_by = actor_id
        model.decided_at = self._clock.now()
        model.decision_notes = reason.strip()
        model.version += 1
        self._session.flush()

        logger.info(
            "request_rejected",
            extra={"request_id": str(request_id), "decided_by": str(actor_id)},
        )
        return model.to_dto()

    def withdraw(self, request_id: UUID, requester_token: str) -> AccessRequest:
        """Requester withdraws their own pending request.

        The token is the contact phone given at submission.
        """
        model = self._load(request_id, for_update=True)

        token = (requester_token or "").strip().encode("utf-8")
        if not hmac.compare_digest(token, model.contact_phone.encode("utf-8")):
            raise AuthorizationError("requester", "withdraw request", "requester token does not match")

        ensure_transition(request_id, model.status, RequestStatus.WITHDRAWN, "withdraw")

        model.status = RequestStatus.WITHDRAWN.value
        model.decided_at = self._clock.now()
        model.version += 1
        self._session.flush()

        logger.info("request_withdrawn", extra={"request_id": str(request_id)})
        return model.to_dto()

    def approve_batch(
        self,
        request_ids: Iterable[UUID],
        actor_id: UUID,
        terms: ApprovalTerms | None = None,
    ) -> BatchResult:
        """Approve each request independently; partial success is normal."""
        shared = replace(terms or ApprovalTerms(), expected_version=None)

        def _approve(request_id: UUID) -> BatchItemResult:
            result = self.approve(request_id, actor_id, shared)
            return BatchItemResult(
                request_id=request_id,
                success=True,
                request=result.request,
                credential=result.credential,
            )

        return self._run_batch("approve", request_ids, actor_id, _approve)

    def reject_batch(
        self,
        request_ids: Iterable[UUID],
        actor_id: UUID,
        reason: str,
    ) -> BatchResult:
        """Reject each request independently with the same reason."""

        def _reject(request_id: UUID) -> BatchItemResult:
            request = self.reject(request_id, actor_id, reason)
            return BatchItemResult(request_id=request_id, success=True, request=request)

        return self._run_batch("reject", request_ids, actor_id, _reject)

    # ------------------------------------------------------------------
    # Passive expiry
    # ------------------------------------------------------------------

    def expire_lapsed(self, as_of: datetime | None = None) -> list[UUID]:
        """Move approved visitor requests whose window has closed to ``expired``.

        Their current credential's cached status follows.  Returns the ids
        of the expired requests.
        """
        as_of = as_of or self._clock.now()
        lapsed = self._session.execute(
            select(AccessRequestModel).where(
                AccessRequestModel.status == RequestStatus.APPROVED.value,
                AccessRequestModel.kind == RequestKind.VISITOR.value,
                AccessRequestModel.visit_end <= as_of,
            )
        ).scalars().all()

        expired: list[UUID] = []
        for model in lapsed:
            ensure_transition(model.request_id, model.status, RequestStatus.EXPIRED, "expire")
            model.status = RequestStatus.EXPIRED.value
            model.version += 1

            credential = self._session.execute(
                select(CredentialModel).where(
                    CredentialModel.request_id == model.request_id,
                    CredentialModel.superseded_at.is_(None),
                    CredentialModel.status == CredentialStatus.ACTIVE.value,
                )
            ).scalar_one_or_none()
            if credential is not None:
                credential.status = CredentialStatus.EXPIRED.value
                credential.version += 1
            expired.append(model.request_id)

        self._session.flush()
        if expired:
            logger.info(
                "requests_expired",
                extra={"count": len(expired), "as_of": as_of.isoformat()},
            )
        return expired

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> AccessRequest:
        return self._load(request_id).to_dto()

    def status_counts(self, merchant_id: UUID | None = None) -> dict[RequestStatus, int]:
        """Number of requests per status, zero-filled."""
        stmt = select(AccessRequestModel.status, func.count()).group_by(
            AccessRequestModel.status
        )
        if merchant_id is not None:
            stmt = stmt.where(AccessRequestModel.merchant_id == merchant_id)

        counts = {status: 0 for status in RequestStatus}
        for status, count in self._session.execute(stmt).all():
            counts[RequestStatus(status)] = count
        return counts

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run_batch(self, action, request_ids, actor_id, apply) -> BatchResult:
        items: dict[UUID, BatchItemResult] = {}
        for request_id in dict.fromkeys(request_ids):
            try:
                with self._session.begin_nested():
                    items[request_id] = apply(request_id)
            except AccessKernelError as exc:
                items[request_id] = BatchItemResult(
                    request_id=request_id,
                    success=False,
                    error_code=exc.code,
                    error_message=str(exc),
                )

        result = BatchResult(items=items)
        logger.info(
            f"batch_{action}_completed",
            extra={
                "actor_id": str(actor_id),
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
            },
        )
        return result

    def _credential_terms(
        self,
        model: AccessRequestModel,
        terms: ApprovalTerms,
        access_level: str,
        now: datetime,
    ) -> CredentialTerms:
        policy = self._credentials.policy

        if model.kind == RequestKind.VISITOR.value:
            if model.visit_end is None or model.visit_end <= now:
                raise ValidationError({"visit_end": "visit window has already ended"})
            default_expiry = model.visit_end
            default_limit = policy.visitor_usage_limit
        else:
            default_expiry = now + policy.employee_validity
            default_limit = policy.employee_usage_limit

        if terms.unlimited_usage:
            usage_limit = None
        elif terms.usage_limit is not None:
            usage_limit = terms.usage_limit
        else:
            usage_limit = default_limit

        permissions = set(terms.permissions)
        permissions.add(access_level)
        if terms.escort_required:
            permissions.add(ESCORT_REQUIRED)

        return CredentialTerms(
            expires_at=terms.expires_at or default_expiry,
            usage_limit=usage_limit,
            permissions=frozenset(permissions),
        )

    def _find_open_duplicate(
        self,
        kind: RequestKind,
        phone: str,
        merchant_id: UUID,
        visit_start: datetime | None,
    ) -> AccessRequestModel | None:
        stmt = select(AccessRequestModel).where(
            AccessRequestModel.contact_phone == phone,
            AccessRequestModel.merchant_id == merchant_id,
            AccessRequestModel.kind == kind.value,
            AccessRequestModel.status.in_([s.value for s in OPEN_REQUEST_STATUSES]),
        )
        if kind == RequestKind.VISITOR:
            stmt = stmt.where(AccessRequestModel.visit_start == visit_start)
        return self._session.execute(stmt.limit(1)).scalar_one_or_none()

    def _load(self, request_id: UUID, for_update: bool = False) -> AccessRequestModel:
        stmt = select(AccessRequestModel).where(AccessRequestModel.request_id == request_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model

    def _authorize_decision(self, actor_id: UUID, merchant_id: UUID, action: str) -> None:
        actor = self._actors.get_actor(actor_id)
        if actor is None:
            raise AuthorizationError(str(actor_id), action, "unknown actor")
        if not actor.can_decide(merchant_id):
            raise AuthorizationError(
                str(actor_id), action, f"not an administrator of merchant {merchant_id}",
            )

    @staticmethod
    def _check_version(model: AccessRequestModel, expected_version: int | None) -> None:
        if expected_version is not None and model.version != expected_version:
            raise ConflictError(
                entity_type="Request",
                entity_id=str(model.request_id),
                expected_version=expected_version,
                actual_version=model.version,
            )
