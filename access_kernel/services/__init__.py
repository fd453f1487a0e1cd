"""Services for the access kernel (write side)."""

from access_kernel.services.access_recorder import AccessRecorder
from access_kernel.services.approval_workflow import ApprovalWorkflow
from access_kernel.services.credential_service import CredentialService
from access_kernel.services.sequence_service import SequenceService
from access_kernel.services.verification_gate import VerificationGate

__all__ = [
    "AccessRecorder",
    "ApprovalWorkflow",
    "CredentialService",
    "SequenceService",
    "VerificationGate",
]
