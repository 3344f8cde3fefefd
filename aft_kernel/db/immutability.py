"""
ORM-Level Integrity Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The audit trail is the record regulators read.  Entries must never be
edited or removed after they are written, and a request's status must
only ever move along the transition graph.  Services already obey both
rules; these listeners make the rules hold for ANY code path that goes
through the SQLAlchemy ORM (a script, a shell session, a future service).

SQLAlchemy fires events before UPDATE/DELETE statements reach the database:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
         |                             IllegalTransitionError
         v
    [before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

If a check fails the flush is aborted and the caller's transaction is
rolled back by session_scope().

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | Rule
---------------------|-------------------------------------------------------
AuditLogEntry        | Never updated, never deleted
SecurityAuditEvent   | Never updated, never deleted
AftRequestModel      | status changes must be an edge of REQUEST_TRANSITIONS

===============================================================================
USAGE
===============================================================================

Called once at application startup, after models are imported:

    from aft_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from aft_kernel.exceptions import IllegalTransitionError, ImmutabilityViolationError
from aft_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, entity_id: str, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_audit_entry_update(mapper, connection, target):
    """Audit log entries are immutable from creation."""
    _block(
        "AuditLogEntry", str(target.seq), "UPDATE",
        "Audit log entries are immutable and cannot be modified",
    )


def _check_audit_entry_delete(mapper, connection, target):
    """Audit log entries cannot be deleted."""
    _block(
        "AuditLogEntry", str(target.seq), "DELETE",
        "Audit log entries cannot be deleted",
    )


def _check_security_event_update(mapper, connection, target):
    """Security events are immutable from creation."""
    _block(
        "SecurityAuditEvent", str(target.id), "UPDATE",
        "Security audit events are immutable and cannot be modified",
    )


def _check_security_event_delete(mapper, connection, target):
    """Security events cannot be deleted."""
    _block(
        "SecurityAuditEvent", str(target.id), "DELETE",
        "Security audit events cannot be deleted",
    )


def _check_request_status_transition(mapper, connection, target):
    """
    Reject a status change that is not an edge of the transition graph.

    Uses attribute history, so only a flush that actually changes
    ``status`` is checked.
    """
    from aft_kernel.domain.statuses import RequestStatus, ensure_transition

    history = inspect(target).attrs.status.history
    if not history.has_changes() or not history.deleted or not history.added:
        return

    old_status = RequestStatus(history.deleted[0])
    new_status = RequestStatus(history.added[0])
    if old_status == new_status:
        return
    try:
        ensure_transition(old_status, new_status, request_id=target.id)
    except IllegalTransitionError:
        logger.error(
            "illegal_status_write_blocked",
            extra={
                "request_id": target.id,
                "from_status": old_status.value,
                "to_status": new_status.value,
            },
        )
        raise


def register_immutability_listeners():
    """
    Register all integrity enforcement event listeners.

    Idempotent: a listener already registered is not added twice.
    """
    from aft_kernel.models.audit_log import AuditLogEntry
    from aft_kernel.models.request import AftRequestModel
    from aft_kernel.models.security_event import SecurityAuditEvent

    for target, event_name, listener_fn in _listeners(
        AuditLogEntry, SecurityAuditEvent, AftRequestModel,
    ):
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove integrity enforcement event listeners.

    WARNING: Only use this in tests that must write a forbidden change
    to prove it is detected elsewhere (e.g. chain validation).
    """
    from aft_kernel.models.audit_log import AuditLogEntry
    from aft_kernel.models.request import AftRequestModel
    from aft_kernel.models.security_event import SecurityAuditEvent

    for target, event_name, listener_fn in _listeners(
        AuditLogEntry, SecurityAuditEvent, AftRequestModel,
    ):
        _safe_remove_listener(target, event_name, listener_fn)


def _listeners(audit_model, security_model, request_model):
    return (
        (audit_model, "before_update", _check_audit_entry_update),
        (audit_model, "before_delete", _check_audit_entry_delete),
        (security_model, "before_update", _check_security_event_update),
        (security_model, "before_delete", _check_security_event_delete),
        (request_model, "before_update", _check_request_status_transition),
    )
