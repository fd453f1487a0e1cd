"""ORM models for the access kernel."""

from access_kernel.models.access_record import AccessRecordModel
from access_kernel.models.credential import CredentialModel
from access_kernel.models.request import AccessRequestModel
from access_kernel.models.sequence import SequenceCounter

__all__ = [
    "AccessRequestModel",
    "CredentialModel",
    "AccessRecordModel",
    "SequenceCounter",
]
