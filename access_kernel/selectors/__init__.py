"""Selectors for the access kernel (read side)."""

from access_kernel.selectors.audit_trail import AuditTrailSelector
from access_kernel.selectors.base import BaseSelector

__all__ = [
    "AuditTrailSelector",
    "BaseSelector",
]
