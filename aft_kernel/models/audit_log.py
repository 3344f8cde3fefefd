"""
Module: aft_kernel.models.audit_log
Responsibility: ORM persistence for the per-request audit log and its
    tamper-evident hash chain.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py only.

Invariants enforced:
    - Audit entries are append-only; no UPDATE or DELETE (ORM listeners in
      db/immutability.py).
    - hash = H(request_id | action | old_status | new_status | actor_id |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is globally monotonic, allocated by SequenceService.
    - request_id carries no foreign key: entries outlive a deleted draft.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a mismatch.

Audit relevance:
    AuditLogEntry IS the request history.  Every status change, every
    accumulator write and every field edit produces exactly one entry in
    the same transaction as the change it records.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aft_kernel.db.base import Base, UUIDString
from aft_kernel.domain.dtos import AuditEntryRecord


class AuditAction(str, Enum):
    """Labels written to the audit log.

    Contract: Every request operation maps to exactly one member.
    Submission with automatic dispatch writes SUBMITTED (or RESUBMITTED)
    followed by DISPATCHED.
    """

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    SUBMITTED = "SUBMITTED"
    RESUBMITTED = "RESUBMITTED"
    DISPATCHED = "DISPATCHED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    DTA_ASSIGNED = "DTA_ASSIGNED"
    TRANSFER_INITIATED = "TRANSFER_INITIATED"
    TRANSFER_COMPLETED = "TRANSFER_COMPLETED"
    ANTIVIRUS_SCAN_RECORDED = "ANTIVIRUS_SCAN_RECORDED"
    DTA_SIGNED = "DTA_SIGNED"
    SME_SIGNED = "SME_SIGNED"
    DISPOSITION_RECORDED = "DISPOSITION_RECORDED"
    DELETED = "DELETED"


class AuditLogEntry(Base):
    """
    One row of request history.

    Contract:
        Rows are append-only.  Each row's hash includes the previous
        row's hash, so editing or removing any row is detectable.

    Guarantees:
        - seq is globally unique and strictly increasing.
        - prev_hash is None only for the genesis entry.
        - old_status is None only for CREATED; new_status is None only
          for DELETED.

    Non-goals:
        - This model does NOT compute hashes; AuditorService does.
    """

    __tablename__ = "aft_audit_log"

    __table_args__ = (
        Index("idx_aft_audit_request", "request_id", "seq"),
        Index("idx_aft_audit_action", "action"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    request_id: Mapped[int] = mapped_column(nullable=False)
    request_number: Mapped[str] = mapped_column(String(64), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    acting_role: Mapped[str | None] = mapped_column(String(32), nullable=True)

    action: Mapped[str] = mapped_column(String(32), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    def to_record(self) -> AuditEntryRecord:
        return AuditEntryRecord(
            seq=self.seq,
            request_id=self.request_id,
            request_number=self.request_number,
            action=self.action,
            actor_id=self.actor_id,
            acting_role=self.acting_role,
            old_status=self.old_status,
            new_status=self.new_status,
            notes=self.notes,
            occurred_at=self.occurred_at,
            payload=dict(self.payload or {}),
            hash=self.hash,
        )

    def __repr__(self) -> str:
        return f"<AuditLogEntry #{self.seq} {self.action} request={self.request_id}>"
