"""
Data transfer objects crossing the kernel boundary.

All DTOs are frozen dataclasses.  Services return these, never ORM
instances, so callers cannot mutate persisted state by accident.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

from aft_kernel.domain.accumulator import ApprovalData, SignerInfo, TransferData
from aft_kernel.domain.statuses import RequestStatus, Role, TransferType


@dataclass(frozen=True)
class Actor:
    """
    The authenticated user performing an operation.

    ``roles`` is the union of the primary role and every active additional
    role.  Which of them is being exercised is passed separately as
    ``acting_as_role``.
    """

    id: UUID
    name: str
    email: str
    roles: frozenset[Role]

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", frozenset(Role(r) for r in self.roles))

    def holds(self, role: Role) -> bool:
        return role in self.roles

    def signer_as(self, role: Role) -> SignerInfo:
        """Identity block written into accumulator sub-records."""
        return SignerInfo(id=self.id, name=self.name, email=self.email, role=role)


@dataclass(frozen=True)
class RequestSnapshot:
    """Read-only view of a request after an operation."""

    id: int
    request_number: str
    status: RequestStatus
    transfer_type: TransferType
    classification: str
    transfer_purpose: str
    source_system: str
    dest_system: str
    requestor_id: UUID
    approval_data: ApprovalData
    transfer_data: TransferData
    version: int
    created_at: datetime
    updated_at: datetime
    details: Mapping[str, Any] = field(default_factory=dict)
    approver_id: UUID | None = None
    dta_id: UUID | None = None
    sme_id: UUID | None = None
    media_custodian_id: UUID | None = None
    rejection_reason: str | None = None


@dataclass(frozen=True)
class AuditEntryRecord:
    """One audit log entry as returned by history queries."""

    seq: int
    request_id: int
    request_number: str
    action: str
    actor_id: UUID
    acting_role: str | None
    old_status: str | None
    new_status: str | None
    notes: str
    occurred_at: datetime
    payload: Mapping[str, Any]
    hash: str


@dataclass(frozen=True)
class SecurityEventRecord:
    """A security audit event as returned by queries."""

    event_type: str
    severity: str
    request_id: int
    actor_id: UUID
    actor_email: str
    acting_role: str | None
    occurred_at: datetime
    retain_until: datetime
    details: Mapping[str, Any]
