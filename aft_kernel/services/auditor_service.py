"""
AuditorService -- request audit log and hash chain maintenance.

Responsibility:
    Appends one immutable, hash-chained AuditLogEntry per request
    operation, and provides chain validation, ordered history and status
    replay for forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by
    RequestLifecycleService inside the same unit of work as the change
    being recorded.

Invariants enforced:
    - seq is allocated by SequenceService (never raw SQL max+1).
    - hash = H(request_id | action | old_status | new_status | actor_id |
      payload_hash | prev_hash); every entry links to its predecessor.
    - payload_hash covers both the human-readable note and the
      structured payload, so editing either is detectable.
    - Append-only: AuditLogEntry is protected by ORM listeners.

Failure modes:
    - AuditChainBrokenError: a recomputed hash or link does not match.
    - Any SQLAlchemyError propagates; the caller's session_scope() rolls
      back the status change together with the audit write.

Audit relevance:
    This IS the audit writer.  Its history is what "who moved request N
    to status S, and when" is answered from.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from aft_kernel.domain.clock import Clock, SystemClock
from aft_kernel.domain.dtos import Actor, AuditEntryRecord
from aft_kernel.domain.statuses import RequestStatus, Role
from aft_kernel.exceptions import AuditChainBrokenError
from aft_kernel.logging_config import get_logger
from aft_kernel.models.audit_log import AuditAction, AuditLogEntry
from aft_kernel.models.request import AftRequestModel
from aft_kernel.services.sequence_service import SequenceService
from aft_kernel.utils.hashing import hash_audit_entry, hash_payload

logger = get_logger("services.auditor")


def _entry_payload_hash(notes: str, payload: dict[str, Any] | None) -> str:
    return hash_payload({"notes": notes, "payload": payload or {}})


def _entry_hash(entry: AuditLogEntry) -> str:
    return hash_audit_entry(
        request_id=entry.request_id,
        action=entry.action,
        old_status=entry.old_status,
        new_status=entry.new_status,
        actor_id=str(entry.actor_id),
        payload_hash=entry.payload_hash,
        prev_hash=entry.prev_hash,
    )


class AuditorService:
    """
    Service for writing and validating the request audit log.

    Contract:
        ``record_transition`` writes exactly one AuditLogEntry and
        flushes it.  It never decides whether the transition is allowed;
        callers record only what they have already applied.

    Guarantees:
        - Entries for a request are totally ordered by ``seq``.
        - Tampering with any stored field is detected by
          ``validate_chain()``.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_entry = self._session.execute(
            select(AuditLogEntry).order_by(AuditLogEntry.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_entry.hash if last_entry else None

    def record_transition(
        self,
        request: AftRequestModel,
        action: AuditAction,
        old_status: RequestStatus | None,
        new_status: RequestStatus | None,
        actor: Actor,
        acting_role: Role | None = None,
        notes: str = "",
        payload: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        """
        Append one audit entry for ``request``.

        Preconditions:
            - ``request`` has been flushed (it has an id).
            - The change being recorded has already been applied to the
              session.

        Postconditions:
            - A new AuditLogEntry is flushed with the next ``seq`` and a
              valid link to the previous entry's hash.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_LOG)
        prev_hash = self._get_last_hash()
        payload_data = dict(payload or {})

        entry = AuditLogEntry(
            seq=seq,
            request_id=request.id,
            request_number=request.request_number,
            actor_id=actor.id,
            acting_role=acting_role.value if acting_role else None,
            action=action.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value if new_status else None,
            notes=notes,
            payload=payload_data,
            occurred_at=self._clock.now(),
            payload_hash=_entry_payload_hash(notes, payload_data),
            prev_hash=prev_hash,
        )
        entry.hash = _entry_hash(entry)

        self._session.add(entry)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "request_id": request.id,
                "action": action.value,
                "old_status": entry.old_status,
                "new_status": entry.new_status,
                "seq": seq,
            },
        )
        return entry

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If any entry's content hash, entry hash
                or link to its predecessor does not match.
        """
        entries = self._session.execute(
            select(AuditLogEntry).order_by(AuditLogEntry.seq)
        ).scalars().all()

        if not entries:
            return True

        if entries[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": entries[0].seq})
            raise AuditChainBrokenError(entries[0].seq, "GENESIS", entries[0].prev_hash)

        for i, entry in enumerate(entries):
            expected_payload_hash = _entry_payload_hash(entry.notes, entry.payload)
            if entry.payload_hash != expected_payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(
                    entry.seq, expected_payload_hash, entry.payload_hash,
                )

            expected_hash = _entry_hash(entry)
            if entry.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(entry.seq, expected_hash, entry.hash)

            if i > 0:
                expected_prev = entries[i - 1].hash
                if entry.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                    raise AuditChainBrokenError(
                        entry.seq, expected_prev, entry.prev_hash or "GENESIS",
                    )

        logger.info("audit_chain_valid", extra={"entry_count": len(entries)})
        return True

    def get_history(self, request_id: int) -> tuple[AuditEntryRecord, ...]:
        """All entries for ``request_id`` in ``seq`` order."""
        entries = self._session.execute(
            select(AuditLogEntry)
            .where(AuditLogEntry.request_id == request_id)
            .order_by(AuditLogEntry.seq)
        ).scalars().all()
        return tuple(entry.to_record() for entry in entries)

    def replay_status(self, request_id: int) -> RequestStatus | None:
        """
        Fold ``new_status`` over the request's history.

        Returns None for an unknown request or a deleted one, otherwise
        the status the log says the request is in.  Entries that do not
        change status (edits, scans) carry their current status as both
        old and new, so the fold is unaffected by them.
        """
        status: RequestStatus | None = None
        for record in self.get_history(request_id):
            status = RequestStatus(record.new_status) if record.new_status else None
        return status
