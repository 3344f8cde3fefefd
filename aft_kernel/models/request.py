"""
AFT request model.

Responsibility:
    Persists the request row: classification fields, ownership, status,
    and the two workflow accumulators as canonical JSON text.

Invariants enforced:
    - ``status`` is changed only through ``set_status``, which checks the
      transition graph; the ORM listener in db/immutability.py checks it
      again at flush time.
    - ``approval_data`` / ``transfer_data`` are read through the strict
      decoders.  Unreadable text raises CorruptAccumulatorError.
    - ``version`` is the optimistic-lock column: every UPDATE is
      conditional on the version that was read.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aft_kernel.db.base import Base, UUIDString
from aft_kernel.domain.accumulator import (
    ApprovalData,
    TransferData,
    decode_approval_data,
    decode_transfer_data,
    encode_approval_data,
    encode_transfer_data,
)
from aft_kernel.domain.authorization import RequestContext
from aft_kernel.domain.dtos import RequestSnapshot
from aft_kernel.domain.policy import WorkflowPolicy
from aft_kernel.domain.statuses import RequestStatus, TransferType, ensure_transition


class AftRequestModel(Base):
    """A file transfer request."""

    __tablename__ = "aft_requests"

    __table_args__ = (
        Index("idx_aft_requests_status", "status"),
        Index("idx_aft_requests_requestor", "requestor_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    request_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    transfer_type: Mapped[str] = mapped_column(String(16), nullable=False)
    classification: Mapped[str] = mapped_column(String(64), nullable=False)
    transfer_purpose: Mapped[str] = mapped_column(Text, nullable=False)
    source_system: Mapped[str] = mapped_column(String(255), nullable=False)
    dest_system: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    requestor_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("aft_users.id"), nullable=False,
    )
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    dta_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    sme_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    media_custodian_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False)
    approval_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    transfer_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # -----------------------------------------------------------------
    # Typed accessors
    # -----------------------------------------------------------------

    @property
    def status_enum(self) -> RequestStatus:
        return RequestStatus(self.status)

    @property
    def transfer_type_enum(self) -> TransferType:
        return TransferType(self.transfer_type)

    def set_status(self, new_status: RequestStatus) -> RequestStatus:
        """Move to ``new_status``; returns the previous status."""
        old_status = self.status_enum
        ensure_transition(old_status, new_status, request_id=self.id)
        self.status = new_status.value
        return old_status

    def load_approval_data(self) -> ApprovalData:
        return decode_approval_data(self.approval_data, request_id=self.id)

    def store_approval_data(self, data: ApprovalData) -> None:
        self.approval_data = encode_approval_data(data)

    def load_transfer_data(self) -> TransferData:
        return decode_transfer_data(self.transfer_data, request_id=self.id)

    def store_transfer_data(self, data: TransferData) -> None:
        self.transfer_data = encode_transfer_data(data)

    # -----------------------------------------------------------------
    # Views
    # -----------------------------------------------------------------

    def to_context(self, policy: WorkflowPolicy) -> RequestContext:
        """Authorization facts for this request."""
        approval = self.load_approval_data()
        transfer = self.load_transfer_data()
        current = approval.current_round
        chain = current.chain if current else policy.chain_for(self.transfer_type_enum)
        return RequestContext(
            request_id=self.id,
            requestor_id=self.requestor_id,
            status=self.status_enum,
            transfer_type=self.transfer_type_enum,
            approval_chain=chain,
            signed_roles=current.signed_roles if current else frozenset(),
            round_signer_ids=current.signer_ids if current else frozenset(),
            participant_ids=approval.participant_ids | transfer.participant_ids,
            dta_id=self.dta_id,
            sme_id=self.sme_id,
            media_custodian_id=self.media_custodian_id,
        )

    def to_snapshot(self) -> RequestSnapshot:
        return RequestSnapshot(
            id=self.id,
            request_number=self.request_number,
            status=self.status_enum,
            transfer_type=self.transfer_type_enum,
            classification=self.classification,
            transfer_purpose=self.transfer_purpose,
            source_system=self.source_system,
            dest_system=self.dest_system,
            details=dict(self.details or {}),
            requestor_id=self.requestor_id,
            approver_id=self.approver_id,
            dta_id=self.dta_id,
            sme_id=self.sme_id,
            media_custodian_id=self.media_custodian_id,
            approval_data=self.load_approval_data(),
            transfer_data=self.load_transfer_data(),
            rejection_reason=self.rejection_reason,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<AftRequest {self.request_number} {self.status}>"
