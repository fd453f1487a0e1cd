"""
Typed Exception Hierarchy for the Access Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The UI/API layer in front of this kernel translates failures into
user-facing messages.  It must never parse message strings to decide what
happened, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        workflow.approve(request_id, actor_id, decision)
    except Exception as e:
        if "pending" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        workflow.approve(request_id, actor_id, decision)
    except InvalidStateError as e:
        api_response(code=e.code, status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AccessKernelError (base)
    |
    +-- ValidationError
    |
    +-- RequestError
    |   +-- BlacklistedError
    |   +-- DuplicateRequestError
    |
    +-- InvalidStateError
    |
    +-- CredentialCodeError
    |   +-- CodeGenerationError
    |   +-- InvalidCodeError
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- CredentialNotFoundError
    |
    +-- AuthorizationError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |
    +-- AuditError
    |   +-- InvalidPairError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                    | When Raised
----------------|-------------------------|-----------------------------------
Validation      | VALIDATION_FAILED       | Malformed/missing input fields
----------------|-------------------------|-----------------------------------
Request         | BLACKLISTED             | Requester on the blacklist
                | DUPLICATE_REQUEST       | Same phone/merchant/slot pending
----------------|-------------------------|-----------------------------------
State           | INVALID_STATE           | Illegal transition attempted
----------------|-------------------------|-----------------------------------
Credential code | CODE_GENERATION_FAILED  | No unique code after several tries
                | INVALID_CODE            | QR payload malformed or tampered
----------------|-------------------------|-----------------------------------
Lookup          | REQUEST_NOT_FOUND       | Unknown request id
                | CREDENTIAL_NOT_FOUND    | Unknown credential id
                | NOT_FOUND               | Unknown request-or-credential id
----------------|-------------------------|-----------------------------------
Authorization   | UNAUTHORIZED            | Actor lacks the role for an action
----------------|-------------------------|-----------------------------------
Concurrency     | VERSION_CONFLICT        | expected_version mismatch
----------------|-------------------------|-----------------------------------
Audit           | INVALID_PAIR            | Entry/exit records cannot pair
                | AUDIT_CHAIN_BROKEN      | Access record hash mismatch
----------------|-------------------------|-----------------------------------
Immutability    | IMMUTABILITY_VIOLATION  | Modifying an access record
----------------|-------------------------|-----------------------------------
Configuration   | CONFIG_INVALID          | Bad configuration file values

Verification-time failures are NOT exceptions.  The gate always returns a
denied outcome with a ``DenialReason`` and writes an access record, because
a physical turnstile cannot retry a thrown error.
"""


class AccessKernelError(Exception):
    """
    Base exception for all access kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "ACCESS_KERNEL_ERROR"


# Validation


class ValidationError(AccessKernelError):
    """
    Malformed or missing input.

    ``field_errors`` maps every violated field to a message; callers get the
    whole list in one round trip, not just the first failure.
    """

    code: str = "VALIDATION_FAILED"

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = dict(field_errors)
        fields = ", ".join(sorted(self.field_errors))
        super().__init__(f"Validation failed for: {fields}")

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(sorted(self.field_errors))


# Request-related exceptions


class RequestError(AccessKernelError):
    """Base exception for request submission policy errors."""

    code: str = "REQUEST_ERROR"


class BlacklistedError(RequestError):
    """Requester is blacklisted; no request is created."""

    code: str = "BLACKLISTED"

    def __init__(self, name: str, phone: str):
        self.name = name
        self.phone = phone
        super().__init__(f"Requester is blacklisted: {name} ({phone})")


class DuplicateRequestError(RequestError):
    """An equivalent request is already pending or approved."""

    code: str = "DUPLICATE_REQUEST"

    def __init__(self, phone: str, merchant_id: str, existing_request_id: str):
        self.phone = phone
        self.merchant_id = merchant_id
        self.existing_request_id = existing_request_id
        super().__init__(
            f"Request already exists for {phone} at merchant {merchant_id}: "
            f"{existing_request_id}"
        )


# State machine


class InvalidStateError(AccessKernelError):
    """Attempted an operation the entity's current status does not allow."""

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        attempted: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} {entity_type} {entity_id} "
            f"in status '{current_status}'"
        )


# Credential codes


class CredentialCodeError(AccessKernelError):
    """Base exception for encoding and decoding credential codes."""

    code: str = "CREDENTIAL_CODE_ERROR"


class CodeGenerationError(CredentialCodeError):
    """No unused code could be drawn."""

    code: str = "CODE_GENERATION_FAILED"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique credential code in {attempts} attempts")


class InvalidCodeError(CredentialCodeError):
    """A scanned QR payload is malformed or its signature does not match."""

    code: str = "INVALID_CODE"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid credential code: {detail}")


# Lookup


class NotFoundError(AccessKernelError):
    """No request or credential with the given id."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class RequestNotFoundError(NotFoundError):
    """Request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__("Request", request_id)


class CredentialNotFoundError(NotFoundError):
    """Credential with given ID was not found."""

    code: str = "CREDENTIAL_NOT_FOUND"

    def __init__(self, credential_id: str):
        self.credential_id = credential_id
        super().__init__("Credential", credential_id)


# Authorization


class AuthorizationError(AccessKernelError):
    """Actor lacks the role required for an action."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, action: str, reason: str):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(f"Actor {actor_id} may not {action}: {reason}")


# Concurrency


class ConcurrencyError(AccessKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """Caller's expected version does not match the stored version."""

    code: str = "VERSION_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int,
        actual_version: int,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on {entity_type} {entity_id}: "
            f"expected {expected_version}, found {actual_version}"
        )


# Audit trail


class AuditError(AccessKernelError):
    """Base exception for audit-trail errors."""

    code: str = "AUDIT_ERROR"


class InvalidPairError(AuditError):
    """Entry and exit records cannot be paired for a duration."""

    code: str = "INVALID_PAIR"

    def __init__(self, entry_record_id: str, exit_record_id: str, reason: str):
        self.entry_record_id = entry_record_id
        self.exit_record_id = exit_record_id
        self.reason = reason
        super().__init__(
            f"Cannot pair entry {entry_record_id} with exit "
            f"{exit_record_id}: {reason}"
        )


class AuditChainBrokenError(AuditError):
    """Access record hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, record_id: str, expected_hash: str, actual_hash: str):
        self.record_id = record_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at access record {record_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Immutability


class ImmutabilityViolationError(AccessKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration


class ConfigurationError(AccessKernelError):
    """Configuration file contains invalid values."""

    code: str = "CONFIG_INVALID"

    def __init__(self, source: str, problems: list[str]):
        self.source = source
        self.problems = list(problems)
        super().__init__(
            f"Invalid configuration in {source}: " + "; ".join(self.problems)
        )
