"""
Typed Exception Hierarchy for the AFT Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (an HTTP layer, a CLI, a test) must map every failure to a stable
classification without parsing message text.  Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA (request id, status, operation, field)

Example - WRONG way to handle errors:
    try:
        service.approve(request_id, actor)
    except Exception as e:
        if "current status" in str(e):  # FRAGILE - message might change
            return 409

Example - RIGHT way (what this module enables):
    try:
        service.approve(request_id, actor)
    except InvalidStateError as e:  # Typed catch
        log.warning("approve refused", extra={"status": e.current_status})
        api_response(code=e.code, status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from AftKernelError:

    AftKernelError (base)
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- UserNotFoundError
    |
    +-- UnauthorizedError
    |
    +-- ForbiddenError
    |   +-- RoleNotHeldError
    |   +-- NotRequestOwnerError
    |
    +-- InvalidStateError
    |   +-- IllegalTransitionError
    |   +-- ConcurrentTransitionError
    |   +-- AccumulatorEntryExistsError
    |
    +-- ValidationError
    |
    +-- CorruptAccumulatorError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- PersistenceError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | REQUEST_NOT_FOUND           | Request id doesn't exist
                | USER_NOT_FOUND              | Referenced user doesn't exist
----------------|-----------------------------|-----------------------------------------
Auth            | UNAUTHORIZED                | No authenticated actor
                | FORBIDDEN                   | Actor may not perform this action
                | ROLE_NOT_HELD               | Actor lacks the required role
                | NOT_REQUEST_OWNER           | Actor is not the request's requestor
----------------|-----------------------------|-----------------------------------------
State           | INVALID_STATE               | Status precondition not met
                | ILLEGAL_TRANSITION          | Edge not in the transition graph
                | CONCURRENT_TRANSITION       | Row changed under us (lost update)
                | ACCUMULATOR_ENTRY_EXISTS    | Write-once sub-record already written
----------------|-----------------------------|-----------------------------------------
Input           | VALIDATION_ERROR            | Missing/malformed input
----------------|-----------------------------|-----------------------------------------
Data            | CORRUPT_ACCUMULATOR         | Persisted approval/transfer data unreadable
                | AUDIT_CHAIN_BROKEN          | Audit hash chain mismatch
                | IMMUTABILITY_VIOLATION      | Update/delete of an append-only row
                | INTERNAL_ERROR              | Database failure (not retried)
"""


class AftKernelError(Exception):
    """
    Base exception for all AFT kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "AFT_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(AftKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class RequestNotFoundError(NotFoundError):
    """AFT request does not exist."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: int | str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class UserNotFoundError(NotFoundError):
    """Referenced user does not exist or is inactive."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


# Authentication / authorization exceptions


class UnauthorizedError(AftKernelError):
    """No authenticated actor was supplied."""

    code: str = "UNAUTHORIZED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Authentication required for {operation}")


class ForbiddenError(AftKernelError):
    """
    Authenticated actor is not permitted to perform this action.

    Distinct from NotFoundError and InvalidStateError so that callers can
    map it to a permission failure.
    """

    code: str = "FORBIDDEN"

    def __init__(
        self,
        operation: str,
        reason: str,
        request_id: int | None = None,
        actor_id: str | None = None,
    ):
        self.operation = operation
        self.reason = reason
        self.request_id = request_id
        self.actor_id = actor_id
        target = f" request {request_id}" if request_id is not None else ""
        super().__init__(f"Forbidden: cannot {operation}{target}: {reason}")


class RoleNotHeldError(ForbiddenError):
    """Actor does not hold any role that may perform the operation."""

    code: str = "ROLE_NOT_HELD"

    def __init__(
        self,
        operation: str,
        required_roles: tuple[str, ...],
        request_id: int | None = None,
        actor_id: str | None = None,
    ):
        self.required_roles = required_roles
        super().__init__(
            operation,
            f"requires one of roles {', '.join(required_roles)}",
            request_id=request_id,
            actor_id=actor_id,
        )


class NotRequestOwnerError(ForbiddenError):
    """Actor is not the requestor who created the request."""

    code: str = "NOT_REQUEST_OWNER"

    def __init__(
        self,
        operation: str,
        request_id: int | None = None,
        actor_id: str | None = None,
    ):
        super().__init__(
            operation,
            "only the request's requestor may do this",
            request_id=request_id,
            actor_id=actor_id,
        )


# State exceptions


class InvalidStateError(AftKernelError):
    """
    Status precondition not met.

    The message always includes the request's actual current status.
    """

    code: str = "INVALID_STATE"

    def __init__(
        self,
        operation: str,
        current_status: str,
        request_id: int | None = None,
        detail: str | None = None,
    ):
        self.operation = operation
        self.current_status = current_status
        self.request_id = request_id
        self.detail = detail
        target = f" request {request_id}" if request_id is not None else ""
        message = (
            f"Cannot {operation}{target}: current status is '{current_status}'"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class IllegalTransitionError(InvalidStateError):
    """Requested status change is not an edge of the transition graph."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, from_status: str, to_status: str, request_id: int | None = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            "transition",
            from_status,
            request_id=request_id,
            detail=f"no transition to '{to_status}'",
        )


class ConcurrentTransitionError(InvalidStateError):
    """Request row was changed by another transaction since it was read."""

    code: str = "CONCURRENT_TRANSITION"

    def __init__(self, operation: str, current_status: str, request_id: int | None = None):
        super().__init__(
            operation,
            current_status,
            request_id=request_id,
            detail="request was modified concurrently",
        )


class AccumulatorEntryExistsError(InvalidStateError):
    """A write-once accumulator sub-record has already been written."""

    code: str = "ACCUMULATOR_ENTRY_EXISTS"

    def __init__(
        self,
        operation: str,
        current_status: str,
        entry_key: str,
        request_id: int | None = None,
    ):
        self.entry_key = entry_key
        super().__init__(
            operation,
            current_status,
            request_id=request_id,
            detail=f"'{entry_key}' already recorded",
        )


# Input exceptions


class ValidationError(AftKernelError):
    """Malformed or incomplete input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Data integrity exceptions


class CorruptAccumulatorError(AftKernelError):
    """
    Persisted approval or transfer data could not be decoded.

    Raised on read; never replaced by an empty default.
    """

    code: str = "CORRUPT_ACCUMULATOR"

    def __init__(self, field_name: str, reason: str, request_id: int | None = None):
        self.field_name = field_name
        self.reason = reason
        self.request_id = request_id
        target = f" on request {request_id}" if request_id is not None else ""
        super().__init__(f"Corrupt {field_name}{target}: {reason}")


class AuditError(AftKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_entry_seq: int, expected_hash: str, actual_hash: str):
        self.audit_entry_seq = audit_entry_seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {audit_entry_seq}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class ImmutabilityError(AftKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    Audit log entries and security events are immutable from creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class PersistenceError(AftKernelError):
    """
    Database failure surfaced as a generic internal error.

    The engine does not retry; the original exception is chained.
    """

    code: str = "INTERNAL_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Internal error during {operation}: {detail}")
