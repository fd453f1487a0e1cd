"""
Request draft validation (``access_kernel.domain.validation``).

Collects EVERY problem with a draft before raising, so a form can highlight
all bad fields in one round trip.  Pure; the caller supplies ``now``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from access_kernel.domain.request import RequestDraft, RequestKind
from access_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class DraftRules:
    """Format rules for submitted drafts (built from configuration)."""

    phone_pattern: str = r"^\+?\d{6,20}$"
    id_document_pattern: str = r"^[A-Za-z0-9\-]{4,32}$"
    max_name_length: int = 100
    max_purpose_length: int = 500


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def collect_draft_errors(
    draft: RequestDraft,
    now: datetime,
    rules: DraftRules | None = None,
) -> dict[str, str]:
    """Map each invalid field of ``draft`` to a message."""
    rules = rules or DraftRules()
    errors: dict[str, str] = {}

    try:
        kind = RequestKind(draft.kind)
    except ValueError:
        errors["kind"] = f"unknown request kind: {draft.kind!r}"
        kind = None

    if _blank(draft.requester_name):
        errors["requester_name"] = "is required"
    elif len(draft.requester_name.strip()) > rules.max_name_length:
        errors["requester_name"] = f"must be at most {rules.max_name_length} characters"

    if _blank(draft.contact_phone):
        errors["contact_phone"] = "is required"
    elif not re.match(rules.phone_pattern, draft.contact_phone.strip()):
        errors["contact_phone"] = "is not a valid phone number"

    if _blank(draft.purpose):
        errors["purpose"] = "is required"
    elif len(draft.purpose.strip()) > rules.max_purpose_length:
        errors["purpose"] = f"must be at most {rules.max_purpose_length} characters"

    if draft.merchant_id is None:
        errors["merchant_id"] = "is required"

    if draft.id_document is not None and not re.match(
        rules.id_document_pattern, draft.id_document.strip()
    ):
        errors["id_document"] = "is not a valid document number"

    if kind == RequestKind.VISITOR:
        if draft.visit_start is None:
            errors["visit_start"] = "is required for visitors"
        if draft.visit_end is None:
            errors["visit_end"] = "is required for visitors"

    for name in ("visit_start", "visit_end"):
        value = getattr(draft, name)
        if value is not None and value.tzinfo is None and name not in errors:
            errors[name] = "must be timezone-aware"

    start, end = draft.visit_start, draft.visit_end
    if "visit_start" not in errors and start is not None and start < now:
        errors["visit_start"] = "is in the past"
    if (
        "visit_start" not in errors
        and "visit_end" not in errors
        and start is not None
        and end is not None
        and end < start
    ):
        errors["visit_end"] = "is before visit_start"

    return errors


def validate_draft(
    draft: RequestDraft,
    now: datetime,
    rules: DraftRules | None = None,
) -> None:
    """Raise ``ValidationError`` listing every invalid field."""
    errors = collect_draft_errors(draft, now, rules)
    if errors:
        raise ValidationError(errors)
