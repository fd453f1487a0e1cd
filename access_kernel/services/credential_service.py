"""
access_kernel.services.credential_service -- Credential issuance and renewal.

Responsibility:
    Mints credentials for approved requests, re-issues them with a fresh
    code (``refresh``), revokes them, and keeps the cached status column in
    step with time (``expire_stale``).

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    ``ApprovalWorkflow`` is the only caller of ``issue`` in production.

Invariants enforced:
    - A request owns at most one current (non-superseded) credential.
      Issuing or refreshing supersedes the previous one first, and a
      superseded code is denied ``revoked`` from then on.
    - ``expires_at`` is strictly after issuance and ``usage_limit`` is a
      non-negative integer or UNLIMITED.
    - ``revoke`` is idempotent.

Failure modes:
    - CredentialNotFoundError / RequestNotFoundError for unknown ids.
    - InvalidStateError: issuing for a non-approved request, refreshing a
      superseded, revoked or expired credential, or refreshing one whose
      request is no longer approved.
    - CodeGenerationError: no unused code after several draws.
    - ValidationError: bad terms, or refreshing a credential whose bounds
      have already passed.
    - AuthorizationError: actor may not manage credentials for the merchant.
    - ConflictError: ``expected_version`` does not match.
"""

from __future__ import annotations

import secrets
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from access_kernel.domain.clock import Clock, SystemClock
from access_kernel.domain.codes import CodeSigner, ScannableCode
from access_kernel.domain.collaborators import ActorDirectory
from access_kernel.domain.credential import (
    SUPERSEDED_REASON,
    Credential,
    CredentialPolicy,
    CredentialStatistics,
    CredentialStatus,
    CredentialTerms,
    effective_status,
    is_usable,
    validate_terms,
)
from access_kernel.domain.request import RequestStatus
from access_kernel.exceptions import (
    AuthorizationError,
    CodeGenerationError,
    ConfigurationError,
    ConflictError,
    CredentialNotFoundError,
    InvalidStateError,
    RequestNotFoundError,
    ValidationError,
)
from access_kernel.logging_config import get_logger
from access_kernel.models.credential import CredentialModel
from access_kernel.models.request import AccessRequestModel

logger = get_logger("services.credential")

_MAX_CODE_ATTEMPTS = 5

_NOT_REFRESHABLE = frozenset({CredentialStatus.REVOKED.value, CredentialStatus.EXPIRED.value})


class CredentialService:
    """Issues, refreshes and revokes credentials.

    Never commits; the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        actors: ActorDirectory,
        clock: Clock | None = None,
        policy: CredentialPolicy | None = None,
        signer: CodeSigner | None = None,
    ) -> None:
        self._session = session
        self._actors = actors
        self._clock = clock or SystemClock()
        self._policy = policy or CredentialPolicy()
        self._signer = signer

    @property
    def policy(self) -> CredentialPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(self, request_id: UUID, terms: CredentialTerms) -> Credential:
        """Mint a credential for an approved request.

        Any current credential of the request is superseded first.
        """
        now = self._clock.now()
        errors = validate_terms(terms, now)
        if errors:
            raise ValidationError(errors)

        request = self._load_request(request_id)
        if request.status != RequestStatus.APPROVED.value:
            raise InvalidStateError(
                entity_type="Request",
                entity_id=str(request_id),
                current_status=request.status,
                attempted="issue a credential for",
            )

        model = self._mint(request_id, terms, now)

        logger.info(
            "credential_issued",
            extra={
                "credential_id": str(model.credential_id),
                "request_id": str(request_id),
                "expires_at": model.expires_at.isoformat(),
                "usage_limit": model.usage_limit,
                "permissions": sorted(model.permissions),
            },
        )
        return model.to_dto()

    def refresh(
        self,
        credential_id: UUID,
        actor_id: UUID,
        expected_version: int | None = None,
    ) -> Credential:
        """Re-issue a credential with a new code and a reset usage count.

        Bounds and permissions carry over unchanged.  The old credential is
        revoked (reason ``superseded``) in the same flush.
        """
        old = self._load(credential_id, for_update=True)
        request = self._load_request(old.request_id)
        self._authorize(actor_id, request.merchant_id, "refresh credential")
        self._check_version(old, expected_version)

        if old.superseded_at is not None or old.status in _NOT_REFRESHABLE:
            raise InvalidStateError(
                entity_type="Credential",
                entity_id=str(credential_id),
                current_status=old.status,
                attempted="refresh",
            )
        if request.status != RequestStatus.APPROVED.value:
            raise InvalidStateError(
                entity_type="Request",
                entity_id=str(old.request_id),
                current_status=request.status,
                attempted="refresh a credential for",
            )

        now = self._clock.now()
        if old.expires_at <= now:
            raise ValidationError({"expires_at": "credential bounds have already passed"})

        terms = CredentialTerms(
            expires_at=old.expires_at,
            usage_limit=old.usage_limit,
            permissions=frozenset(old.permissions or ()),
        )
        new = self._mint(old.request_id, terms, now)

        logger.info(
            "credential_refreshed",
            extra={
                "credential_id": str(new.credential_id),
                "previous_credential_id": str(credential_id),
                "request_id": str(old.request_id),
                "actor_id": str(actor_id),
            },
        )
        return new.to_dto()

    def revoke(
        self,
        credential_id: UUID,
        actor_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> Credential:
        """Revoke a credential.  Revoking a revoked credential is a no-op."""
        if not reason or not reason.strip():
            raise ValidationError({"reason": "is required"})

        model = self._load(credential_id, for_update=True)
        request = self._load_request(model.request_id)
        self._authorize(actor_id, request.merchant_id, "revoke credential")

        if model.status == CredentialStatus.REVOKED.value:
            logger.info(
                "credential_revoke_noop",
                extra={"credential_id": str(credential_id), "actor_id": str(actor_id)},
            )
            return model.to_dto()

        self._check_version(model, expected_version)

        now = self._clock.now()
        model.status = CredentialStatus.REVOKED.value
        model.revoked_at = now
        model.revoked_by = actor_id
        model.revoke_reason = reason.strip()
        model.version += 1
        self._session.flush()

        logger.info(
            "credential_revoked",
            extra={
                "credential_id": str(credential_id),
                "request_id": str(model.request_id),
                "actor_id": str(actor_id),
                "reason": model.revoke_reason,
            },
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # Maintenance and queries
    # ------------------------------------------------------------------

    def expire_stale(self, as_of: datetime | None = None) -> int:
        """Mark active credentials past ``expires_at`` as expired.

        The gate never relies on this; it only keeps the cached status
        honest for listings.  Returns the number of credentials updated.
        """
        as_of = as_of or self._clock.now()
        stale = self._session.execute(
            select(CredentialModel).where(
                CredentialModel.status == CredentialStatus.ACTIVE.value,
                CredentialModel.expires_at <= as_of,
            )
        ).scalars().all()

        for model in stale:
            model.status = CredentialStatus.EXPIRED.value
            model.version += 1
        self._session.flush()

        if stale:
            logger.info(
                "credentials_expired",
                extra={"count": len(stale), "as_of": as_of.isoformat()},
            )
        return len(stale)

    def scannable_code(self, credential_id: UUID) -> ScannableCode:
        """Signed QR payload plus the current time-window code.

        Only usable, current credentials are encoded.

        Raises:
            ConfigurationError: No ``CodeSigner`` was given to the service.
            InvalidStateError: The credential is superseded or not usable.
        """
        if self._signer is None:
            raise ConfigurationError("CredentialService", ["no code signer configured"])

        model = self._load(credential_id)
        now = self._clock.now()
        if model.superseded_at is not None or not is_usable(model, now):
            raise InvalidStateError(
                entity_type="Credential",
                entity_id=str(credential_id),
                current_status=effective_status(model, now).value,
                attempted="encode",
            )

        return ScannableCode(
            credential_id=model.credential_id,
            qr_content=self._signer.encode_qr(model.to_dto()),
            time_code=self._signer.time_code(model.code, now),
            time_code_valid_until=self._signer.window_end(now),
        )

    def get(self, credential_id: UUID) -> Credential:
        return self._load(credential_id).to_dto()

    def current_for_request(self, request_id: UUID) -> Credential | None:
        """The request's non-superseded credential, if it has one."""
        model = self._current_model(request_id)
        return model.to_dto() if model is not None else None

    def statistics(self, request_id: UUID | None = None) -> CredentialStatistics:
        """Count credentials by derived status (optionally for one request)."""
        now = self._clock.now()
        stmt = select(CredentialModel)
        if request_id is not None:
            stmt = stmt.where(CredentialModel.request_id == request_id)
        models = self._session.execute(stmt).scalars().all()

        counts = {"active": 0, "expired": 0, "revoked": 0, "superseded": 0, "exhausted": 0}
        for model in models:
            if model.superseded_at is not None:
                counts["superseded"] += 1
                continue
            status = effective_status(model, now)
            counts[status.value] += 1
            if status == CredentialStatus.ACTIVE and not is_usable(model, now):
                counts["exhausted"] += 1

        return CredentialStatistics(
            total=len(models),
            active=counts["active"],
            expired=counts["expired"],
            revoked=counts["revoked"],
            superseded=counts["superseded"],
            usage_exhausted=counts["exhausted"],
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mint(
        self,
        request_id: UUID,
        terms: CredentialTerms,
        now: datetime,
    ) -> CredentialModel:
        credential_id = uuid4()
        code = self._generate_code()

        previous = self._current_model(request_id)
        if previous is not None:
            previous.superseded_at = now
            previous.superseded_by = credential_id
            if previous.status != CredentialStatus.REVOKED.value:
                previous.status = CredentialStatus.REVOKED.value
                previous.revoked_at = now
                previous.revoke_reason = SUPERSEDED_REASON
            previous.version += 1

        model = CredentialModel(
            credential_id=credential_id,
            request_id=request_id,
            code=code,
            status=CredentialStatus.ACTIVE.value,
            issued_at=now,
            expires_at=terms.expires_at,
            usage_limit=terms.usage_limit,
            usage_count=0,
            permissions=sorted(terms.permissions),
            version=1,
        )
        self._session.add(model)
        self._session.flush()

        if previous is not None:
            logger.info(
                "credential_superseded",
                extra={
                    "credential_id": str(previous.credential_id),
                    "superseded_by": str(credential_id),
                },
            )
        return model

    def _generate_code(self) -> str:
        for _ in range(_MAX_CODE_ATTEMPTS):
            code = secrets.token_urlsafe(self._policy.code_bytes)
            taken = self._session.execute(
                select(CredentialModel.id).where(CredentialModel.code == code)
            ).first()
            if taken is None:
                return code
        raise CodeGenerationError(_MAX_CODE_ATTEMPTS)

    def _current_model(self, request_id: UUID) -> CredentialModel | None:
        return self._session.execute(
            select(CredentialModel).where(
                CredentialModel.request_id == request_id,
                CredentialModel.superseded_at.is_(None),
            )
        ).scalar_one_or_none()

    def _load(self, credential_id: UUID, for_update: bool = False) -> CredentialModel:
        stmt = select(CredentialModel).where(CredentialModel.credential_id == credential_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise CredentialNotFoundError(str(credential_id))
        return model

    def _load_request(self, request_id: UUID) -> AccessRequestModel:
        model = self._session.execute(
            select(AccessRequestModel).where(AccessRequestModel.request_id == request_id)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model

    def _authorize(self, actor_id: UUID, merchant_id: UUID, action: str) -> None:
        actor = self._actors.get_actor(actor_id)
        if actor is None:
            raise AuthorizationError(str(actor_id), action, "unknown actor")
        if not actor.can_manage_credentials(merchant_id):
            raise AuthorizationError(
                str(actor_id), action, f"no credential rights for merchant {merchant_id}",
            )

    @staticmethod
    def _check_version(model: CredentialModel, expected_version: int | None) -> None:
        if expected_version is not None and model.version != expected_version:
            raise ConflictError(
                entity_type="Credential",
                entity_id=str(model.credential_id),
                expected_version=expected_version,
                actual_version=model.version,
            )
