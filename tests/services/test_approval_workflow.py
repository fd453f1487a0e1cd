"""
Tests for ApprovalWorkflow (``access_kernel.services.approval_workflow``).

Covers submission policy (validation, blacklist, duplicates), decisions
with their authorization and optimistic-concurrency checks, batch
decisions, withdrawal and passive expiry.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from access_kernel.domain.credential import ESCORT_REQUIRED, CredentialPolicy, CredentialStatus
from access_kernel.domain.request import ApprovalTerms, RequestKind, RequestStatus
from access_kernel.exceptions import (
    AuthorizationError,
    BlacklistedError,
    ConflictError,
    DuplicateRequestError,
    InvalidStateError,
    RequestNotFoundError,
    ValidationError,
)
from access_kernel.services.approval_workflow import ApprovalWorkflow
from access_kernel.services.credential_service import CredentialService


# =========================================================================
# Submission
# =========================================================================


class TestSubmit:
    """Tests for ApprovalWorkflow.submit()."""

    def test_submit_creates_pending_request(self, approval_workflow, visitor_draft, deterministic_clock):
        request = approval_workflow.submit(visitor_draft(requester_name="  Ada Lovelace "))

        assert request.status == RequestStatus.PENDING
        assert request.kind == RequestKind.VISITOR
        assert request.requester_name == "Ada Lovelace"
        assert request.submitted_at == deterministic_clock.now()
        assert request.version == 1
        assert request.decided_by is None

    def test_employee_submission_without_window(self, approval_workflow, employee_draft):
        request = approval_workflow.submit(employee_draft())
        assert request.visit_start is None
        assert request.visit_end is None

    def test_validation_lists_every_field(self, approval_workflow, visitor_draft):
        draft = visitor_draft(requester_name="", contact_phone="", purpose="")
        with pytest.raises(ValidationError) as exc_info:
            approval_workflow.submit(draft)
        assert exc_info.value.fields == ("contact_phone", "purpose", "requester_name")

    def test_past_visit_start_is_rejected(self, approval_workflow, visitor_draft, deterministic_clock):
        draft = visitor_draft(visit_start=deterministic_clock.now() - timedelta(hours=1))
        with pytest.raises(ValidationError) as exc_info:
            approval_workflow.submit(draft)
        assert "visit_start" in exc_info.value.fields

    def test_validation_failure_stores_nothing(self, approval_workflow, visitor_draft):
        with pytest.raises(ValidationError):
            approval_workflow.submit(visitor_draft(purpose=""))
        assert sum(approval_workflow.status_counts().values()) == 0

    def test_blacklisted_phone(self, approval_workflow, visitor_draft, blacklisted_requester, captured_logs):
        _, phone = blacklisted_requester
        with pytest.raises(BlacklistedError):
            approval_workflow.submit(visitor_draft(contact_phone=phone))

        warnings = [r for r in captured_logs() if r["message"] == "request_blacklisted"]
        assert warnings and warnings[0]["level"] == "WARNING"
        assert approval_workflow.status_counts()[RequestStatus.PENDING] == 0

    def test_blacklisted_name_ignores_case(self, approval_workflow, visitor_draft, blacklisted_requester):
        name, _ = blacklisted_requester
        with pytest.raises(BlacklistedError):
            approval_workflow.submit(visitor_draft(requester_name=name.upper()))

    def test_duplicate_open_request(self, approval_workflow, visitor_draft):
        first = approval_workflow.submit(visitor_draft(contact_phone="+15557770001"))

        with pytest.raises(DuplicateRequestError) as exc_info:
            approval_workflow.submit(visitor_draft(contact_phone="+15557770001"))
        assert exc_info.value.existing_request_id == str(first.request_id)

    def test_duplicate_check_is_per_visit_slot(self, approval_workflow, visitor_draft, deterministic_clock):
        now = deterministic_clock.now()
        approval_workflow.submit(visitor_draft(contact_phone="+15557770002"))
        other_day = approval_workflow.submit(
            visitor_draft(
                contact_phone="+15557770002",
                visit_start=now + timedelta(days=1),
                visit_end=now + timedelta(days=1, hours=4),
            )
        )
        assert other_day.status == RequestStatus.PENDING

    def test_resubmission_after_rejection(self, approval_workflow, visitor_draft, merchant_admin):
        first = approval_workflow.submit(visitor_draft(contact_phone="+15557770003"))
        approval_workflow.reject(first.request_id, merchant_admin.actor_id, "No slot")

        again = approval_workflow.submit(visitor_draft(contact_phone="+15557770003"))
        assert again.request_id != first.request_id


# =========================================================================
# Approval
# =========================================================================


class TestApprove:
    """Tests for ApprovalWorkflow.approve()."""

    def test_approve_issues_credential(self, approval_workflow, submit_visitor, merchant_admin, deterministic_clock):
        request = submit_visitor()
        result = approval_workflow.approve(request.request_id, merchant_admin.actor_id)

        assert result.request.status == RequestStatus.APPROVED
        assert result.request.decided_by == merchant_admin.actor_id
        assert result.request.decided_at == deterministic_clock.now()
        assert result.request.version == 2

        cred = result.credential
        assert cred.request_id == request.request_id
        assert cred.status == CredentialStatus.ACTIVE
        assert cred.expires_at == request.visit_end
        assert cred.usage_limit == 5
        assert cred.usage_count == 0
        assert "standard" in cred.permissions
        assert cred.code

    def test_employee_defaults_unlimited(self, approval_workflow, employee_draft, tenant_admin, deterministic_clock):
        request = approval_workflow.submit(employee_draft())
        result = approval_workflow.approve(request.request_id, tenant_admin.actor_id)

        assert result.credential.is_unlimited
        assert result.credential.expires_at == deterministic_clock.now() + timedelta(hours=720)

    def test_terms_override_defaults(self, approval_workflow, submit_visitor, merchant_admin, deterministic_clock):
        request = submit_visitor()
        expires = deterministic_clock.now() + timedelta(hours=2)
        terms = ApprovalTerms(
            access_level="restricted",
            permissions=frozenset({"loading-dock"}),
            escort_required=True,
            notes="Escort via dock B",
            expires_at=expires,
            usage_limit=1,
        )
        result = approval_workflow.approve(request.request_id, merchant_admin.actor_id, terms)

        assert result.request.access_level == "restricted"
        assert result.request.escort_required is True
        assert result.request.decision_notes == "Escort via dock B"
        assert result.credential.expires_at == expires
        assert result.credential.usage_limit == 1
        assert result.credential.permissions == {"restricted", "loading-dock", ESCORT_REQUIRED}

    def test_policy_access_level_applies_by_default(
        self, session, actor_directory, blacklist, deterministic_clock, submit_visitor, merchant_admin,
    ):
        credentials = CredentialService(
            session, actor_directory, clock=deterministic_clock,
            policy=CredentialPolicy(default_access_level="lobby-only", visitor_usage_limit=2),
        )
        workflow = ApprovalWorkflow(
            session, credentials, blacklist, actor_directory, clock=deterministic_clock,
        )
        request = submit_visitor()
        result = workflow.approve(request.request_id, merchant_admin.actor_id)

        assert result.request.access_level == "lobby-only"
        assert result.credential.permissions == {"lobby-only"}
        assert result.credential.usage_limit == 2

    def test_unlimited_usage_flag(self, approval_workflow, submit_visitor, merchant_admin):
        request = submit_visitor()
        result = approval_workflow.approve(
            request.request_id, merchant_admin.actor_id, ApprovalTerms(unlimited_usage=True),
        )
        assert result.credential.usage_limit is None

    def test_approving_rejected_request_fails(self, approval_workflow, submit_visitor, merchant_admin, credential_service):
        request = submit_visitor()
        approval_workflow.reject(request.request_id, merchant_admin.actor_id, "Not expected")

        with pytest.raises(InvalidStateError):
            approval_workflow.approve(request.request_id, merchant_admin.actor_id)
        assert credential_service.current_for_request(request.request_id) is None

    def test_second_approval_fails(self, approved_visitor, approval_workflow, merchant_admin):
        result = approved_visitor()
        with pytest.raises(InvalidStateError):
            approval_workflow.approve(result.request.request_id, merchant_admin.actor_id)

    def test_other_merchant_admin_is_refused(self, approval_workflow, submit_visitor, other_merchant_admin):
        request = submit_visitor()
        with pytest.raises(AuthorizationError):
            approval_workflow.approve(request.request_id, other_merchant_admin.actor_id)
        assert approval_workflow.get_request(request.request_id).status == RequestStatus.PENDING

    def test_security_cannot_decide(self, approval_workflow, submit_visitor, security_officer):
        request = submit_visitor()
        with pytest.raises(AuthorizationError):
            approval_workflow.approve(request.request_id, security_officer.actor_id)

    def test_unknown_actor_is_refused(self, approval_workflow, submit_visitor):
        request = submit_visitor()
        with pytest.raises(AuthorizationError):
            approval_workflow.approve(request.request_id, uuid4())

    def test_stale_version_conflicts(self, approval_workflow, submit_visitor, merchant_admin):
        request = submit_visitor()
        with pytest.raises(ConflictError) as exc_info:
            approval_workflow.approve(
                request.request_id, merchant_admin.actor_id, ApprovalTerms(expected_version=7),
            )
        assert exc_info.value.actual_version == 1

    def test_matching_version_succeeds(self, approval_workflow, submit_visitor, merchant_admin):
        request = submit_visitor()
        result = approval_workflow.approve(
            request.request_id,
            merchant_admin.actor_id,
            ApprovalTerms(expected_version=request.version),
        )
        assert result.request.status == RequestStatus.APPROVED

    def test_bad_terms_leave_request_pending(self, approval_workflow, submit_visitor, merchant_admin, credential_service):
        request = submit_visitor()
        with pytest.raises(ValidationError) as exc_info:
            approval_workflow.approve(
                request.request_id, merchant_admin.actor_id, ApprovalTerms(usage_limit=-1),
            )
        assert exc_info.value.fields == ("usage_limit",)
        assert approval_workflow.get_request(request.request_id).status == RequestStatus.PENDING
        assert credential_service.current_for_request(request.request_id) is None

    def test_visit_already_over(self, approval_workflow, submit_visitor, merchant_admin, deterministic_clock):
        request = submit_visitor()
        deterministic_clock.advance(hours=10)
        with pytest.raises(ValidationError) as exc_info:
            approval_workflow.approve(request.request_id, merchant_admin.actor_id)
        assert exc_info.value.fields == ("visit_end",)

    def test_unknown_request(self, approval_workflow, merchant_admin):
        with pytest.raises(RequestNotFoundError):
            approval_workflow.approve(uuid4(), merchant_admin.actor_id)

    def test_approval_logged_with_context(self, approval_workflow, submit_visitor, merchant_admin, captured_logs):
        request = submit_visitor()
        approval_workflow.approve(request.request_id, merchant_admin.actor_id)

        approved = [r for r in captured_logs() if r["message"] == "request_approved"]
        assert len(approved) == 1
        assert approved[0]["request_id"] == str(request.request_id)
        assert approved[0]["actor_id"] == str(merchant_admin.actor_id)


# =========================================================================
# Rejection and withdrawal
# =========================================================================


class TestReject:
    def test_reject_records_reason(self, approval_workflow, submit_visitor, merchant_admin):
        request = submit_visitor()
        rejected = approval_workflow.reject(request.request_id, merchant_admin.actor_id, " Wrong date ")

        assert rejected.status == RequestStatus.REJECTED
        assert rejected.decision_notes == "Wrong date"
        assert rejected.decided_by == merchant_admin.actor_id
        assert rejected.is_terminal

    def test_blank_reason(self, approval_workflow, submit_visitor, merchant_admin):
        request = submit_visitor()
        with pytest.raises(ValidationError) as exc_info:
            approval_workflow.reject(request.request_id, merchant_admin.actor_id, "   ")
        assert exc_info.value.fields == ("reason",)

    def test_cannot_reject_approved(self, approved_visitor, approval_workflow, merchant_admin):
        result = approved_visitor()
        with pytest.raises(InvalidStateError):
            approval_workflow.reject(result.request.request_id, merchant_admin.actor_id, "Changed mind")


class TestWithdraw:
    def test_requester_withdraws_with_phone(self, approval_workflow, submit_visitor):
        request = submit_visitor()
        withdrawn = approval_workflow.withdraw(request.request_id, request.contact_phone)
        assert withdrawn.status == RequestStatus.WITHDRAWN
        assert withdrawn.decided_by is None

    def test_wrong_token(self, approval_workflow, submit_visitor):
        request = submit_visitor()
        with pytest.raises(AuthorizationError):
            approval_workflow.withdraw(request.request_id, "+10000000000")

    def test_cannot_withdraw_approved(self, approved_visitor, approval_workflow):
        result = approved_visitor()
        with pytest.raises(InvalidStateError):
            approval_workflow.withdraw(result.request.request_id, result.request.contact_phone)


# =========================================================================
# Batch decisions
# =========================================================================


class TestBatch:
    def test_partial_success(self, approval_workflow, submit_visitor, merchant_admin):
        good = submit_visitor()
        already_rejected = submit_visitor()
        approval_workflow.reject(already_rejected.request_id, merchant_admin.actor_id, "Duplicate visit")
        missing = uuid4()

        result = approval_workflow.approve_batch(
            [good.request_id, already_rejected.request_id, missing],
            merchant_admin.actor_id,
        )

        assert len(result) == 3
        assert result.succeeded == (good.request_id,)
        assert result.failed == (already_rejected.request_id, missing)
        assert not result.all_succeeded
        assert result[good.request_id].credential is not None
        assert result[already_rejected.request_id].error_code == "INVALID_STATE"
        assert result[missing].error_code == "REQUEST_NOT_FOUND"
        assert approval_workflow.get_request(good.request_id).status == RequestStatus.APPROVED

    def test_duplicate_ids_processed_once(self, approval_workflow, submit_visitor, merchant_admin):
        request = submit_visitor()
        result = approval_workflow.approve_batch(
            [request.request_id, request.request_id], merchant_admin.actor_id,
        )
        assert len(result) == 1
        assert result.all_succeeded

    def test_shared_terms_ignore_expected_version(self, approval_workflow, submit_visitor, merchant_admin):
        a, b = submit_visitor(), submit_visitor()
        result = approval_workflow.approve_batch(
            [a.request_id, b.request_id],
            merchant_admin.actor_id,
            ApprovalTerms(expected_version=99),
        )
        assert result.all_succeeded

    def test_reject_batch(self, approval_workflow, submit_visitor, merchant_admin, captured_logs):
        a, b = submit_visitor(), submit_visitor()
        result = approval_workflow.reject_batch(
            [a.request_id, b.request_id], merchant_admin.actor_id, "Site closed",
        )
        assert result.all_succeeded
        assert all(item.request.status == RequestStatus.REJECTED for item in result.items.values())

        summary = [r for r in captured_logs() if r["message"] == "batch_reject_completed"]
        assert summary[0]["succeeded"] == 2
        assert summary[0]["failed"] == 0

    def test_unauthorized_batch_fails_every_item(self, approval_workflow, submit_visitor, other_merchant_admin):
        a = submit_visitor()
        result = approval_workflow.approve_batch([a.request_id], other_merchant_admin.actor_id)
        assert result[a.request_id].error_code == "UNAUTHORIZED"
        assert approval_workflow.get_request(a.request_id).status == RequestStatus.PENDING


# =========================================================================
# Expiry and queries
# =========================================================================


class TestExpireLapsed:
    def test_expires_visitors_after_window(
        self, approved_visitor, approval_workflow, credential_service, deterministic_clock,
    ):
        result = approved_visitor()
        request_id = result.request.request_id

        assert approval_workflow.expire_lapsed() == []

        deterministic_clock.advance(hours=9)
        assert approval_workflow.expire_lapsed() == [request_id]

        assert approval_workflow.get_request(request_id).status == RequestStatus.EXPIRED
        cred = credential_service.get(result.credential.credential_id)
        assert cred.status == CredentialStatus.EXPIRED

    def test_employees_do_not_lapse(self, approval_workflow, employee_draft, tenant_admin, deterministic_clock):
        request = approval_workflow.submit(employee_draft())
        approval_workflow.approve(request.request_id, tenant_admin.actor_id)
        deterministic_clock.advance(days=365)
        assert approval_workflow.expire_lapsed() == []

    def test_pending_requests_untouched(self, submit_visitor, approval_workflow, deterministic_clock):
        request = submit_visitor()
        deterministic_clock.advance(days=2)
        approval_workflow.expire_lapsed()
        assert approval_workflow.get_request(request.request_id).status == RequestStatus.PENDING


class TestStatusCounts:
    def test_zero_filled_counts(self, approval_workflow):
        counts = approval_workflow.status_counts()
        assert set(counts) == set(RequestStatus)
        assert all(v == 0 for v in counts.values())

    def test_counts_by_merchant(self, approval_workflow, submit_visitor, merchant_admin, other_merchant_id):
        a = submit_visitor()
        submit_visitor()
        submit_visitor(merchant_id=other_merchant_id)
        approval_workflow.reject(a.request_id, merchant_admin.actor_id, "No")

        counts = approval_workflow.status_counts(merchant_id=merchant_admin.merchant_id)
        assert counts[RequestStatus.PENDING] == 1
        assert counts[RequestStatus.REJECTED] == 1
        assert approval_workflow.status_counts()[RequestStatus.PENDING] == 2
