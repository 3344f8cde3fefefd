"""
Security audit events.

Rejections and resubmissions are recorded here in addition to the
request audit log, with a retention horizon.  Rows are append-only
(db/immutability.py).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from aft_kernel.db.base import Base, UUIDString
from aft_kernel.domain.dtos import SecurityEventRecord


class SecurityEventType(str, Enum):
    REQUEST_REJECTED = "REQUEST_REJECTED"
    REQUEST_RESUBMITTED = "REQUEST_RESUBMITTED"


class SecuritySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SecurityAuditEvent(Base):
    """A security-relevant workflow event."""

    __tablename__ = "aft_security_events"

    __table_args__ = (
        Index("idx_aft_security_request", "request_id"),
        Index("idx_aft_security_retain", "retain_until"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)

    request_id: Mapped[int] = mapped_column(nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_email: Mapped[str] = mapped_column(String(255), nullable=False)
    acting_role: Mapped[str | None] = mapped_column(String(32), nullable=True)

    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    retain_until: Mapped[datetime] = mapped_column(nullable=False)

    def to_record(self) -> SecurityEventRecord:
        return SecurityEventRecord(
            event_type=self.event_type,
            severity=self.severity,
            request_id=self.request_id,
            actor_id=self.actor_id,
            actor_email=self.actor_email,
            acting_role=self.acting_role,
            occurred_at=self.occurred_at,
            retain_until=self.retain_until,
            details=dict(self.details or {}),
        )

    def __repr__(self) -> str:
        return f"<SecurityAuditEvent {self.event_type} request={self.request_id}>"
