"""
SecurityAuditService -- security event recording for workflow decisions.

Responsibility:
    Writes a SecurityAuditEvent for each rejection and resubmission and
    mirrors it to the ``aft_kernel.security`` logger, so the security
    trail is available both in the database and in the log stream.

Architecture position:
    Kernel > Services.  Called by RequestLifecycleService in the same
    unit of work as the transition.

Invariants enforced:
    - retain_until = occurred_at + retention days (WorkflowPolicy).
    - Rows are append-only (db/immutability.py).
"""

from datetime import timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from aft_kernel.domain.clock import Clock, SystemClock
from aft_kernel.domain.dtos import Actor, SecurityEventRecord
from aft_kernel.domain.statuses import Role
from aft_kernel.logging_config import get_logger, get_security_logger
from aft_kernel.models.security_event import (
    SecurityAuditEvent,
    SecurityEventType,
    SecuritySeverity,
)
from aft_kernel.services.sequence_service import SequenceService

logger = get_logger("services.security_audit")
security_logger = get_security_logger()

_SEVERITY: dict[SecurityEventType, SecuritySeverity] = {
    SecurityEventType.REQUEST_REJECTED: SecuritySeverity.MEDIUM,
    SecurityEventType.REQUEST_RESUBMITTED: SecuritySeverity.LOW,
}


class SecurityAuditService:
    """
    Contract:
        ``record`` writes one SecurityAuditEvent and flushes it.

    Non-goals:
        - Does NOT purge expired events; ``expired`` only lists them.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        retention_days: int = 365,
    ):
        if retention_days < 1:
            raise ValueError("retention_days must be at least 1")
        self._session = session
        self._clock = clock or SystemClock()
        self._retention = timedelta(days=retention_days)
        self._sequence_service = SequenceService(session)

    def record(
        self,
        event_type: SecurityEventType,
        request_id: int,
        actor: Actor,
        acting_role: Role | None = None,
        details: dict[str, Any] | None = None,
    ) -> SecurityAuditEvent:
        occurred_at = self._clock.now()
        severity = _SEVERITY[event_type]
        event = SecurityAuditEvent(
            seq=self._sequence_service.next_value(SequenceService.SECURITY_EVENT),
            event_type=event_type.value,
            severity=severity.value,
            request_id=request_id,
            actor_id=actor.id,
            actor_email=actor.email,
            acting_role=acting_role.value if acting_role else None,
            details=dict(details or {}),
            occurred_at=occurred_at,
            retain_until=occurred_at + self._retention,
        )
        self._session.add(event)
        self._session.flush()

        security_logger.warning(
            "security_event_recorded",
            extra={
                "event_type": event_type.value,
                "severity": severity.value,
                "request_id": request_id,
                "actor_id": str(actor.id),
                "actor_email": actor.email,
                "acting_role": event.acting_role,
            },
        )
        return event

    def events_for_request(self, request_id: int) -> tuple[SecurityEventRecord, ...]:
        events = self._session.execute(
            select(SecurityAuditEvent)
            .where(SecurityAuditEvent.request_id == request_id)
            .order_by(SecurityAuditEvent.seq)
        ).scalars().all()
        return tuple(event.to_record() for event in events)

    def expired(self) -> tuple[SecurityEventRecord, ...]:
        """Events whose retention horizon has passed."""
        now = self._clock.now()
        events = self._session.execute(
            select(SecurityAuditEvent)
            .where(SecurityAuditEvent.retain_until < now)
            .order_by(SecurityAuditEvent.seq)
        ).scalars().all()
        return tuple(event.to_record() for event in events)
