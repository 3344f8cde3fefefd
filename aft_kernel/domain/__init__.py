"""
Pure domain layer.

Status model, authorization table, accumulator variants and DTOs.  No
dependencies on the ORM, the database, or wall-clock time; everything
here is immutable and deterministic.
"""

from aft_kernel.domain.accumulator import (
    AntivirusScan,
    ApprovalData,
    ApprovalRound,
    CompletionRecord,
    DispositionType,
    DtaSignature,
    MediaCustodianSignature,
    RejectionRecord,
    RoundOutcome,
    ScanResult,
    SignerInfo,
    SmeSignature,
    StageSignature,
    SubmissionRecord,
    TechnicalValidation,
    TransferCompletion,
    TransferData,
    TransferInitiation,
    WitnessSignature,
    decode_approval_data,
    decode_transfer_data,
    encode_approval_data,
    encode_transfer_data,
)
from aft_kernel.domain.authorization import (
    AUTHORIZATION_TABLE,
    AuthorizationDecision,
    Operation,
    RequestContext,
    authorize,
)
from aft_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from aft_kernel.domain.dtos import Actor, AuditEntryRecord, RequestSnapshot, SecurityEventRecord
from aft_kernel.domain.policy import DEFAULT_WORKFLOW_POLICY, WorkflowPolicy
from aft_kernel.domain.statuses import (
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    RequestStatus,
    Role,
    TransferType,
)

__all__ = [
    "AUTHORIZATION_TABLE",
    "Actor",
    "AntivirusScan",
    "ApprovalData",
    "ApprovalRound",
    "AuditEntryRecord",
    "AuthorizationDecision",
    "Clock",
    "CompletionRecord",
    "DEFAULT_WORKFLOW_POLICY",
    "DeterministicClock",
    "DispositionType",
    "DtaSignature",
    "MediaCustodianSignature",
    "Operation",
    "REQUEST_TRANSITIONS",
    "RejectionRecord",
    "RequestContext",
    "RequestSnapshot",
    "RequestStatus",
    "Role",
    "RoundOutcome",
    "ScanResult",
    "SecurityEventRecord",
    "SignerInfo",
    "SmeSignature",
    "StageSignature",
    "SubmissionRecord",
    "SystemClock",
    "TERMINAL_STATUSES",
    "TechnicalValidation",
    "TransferCompletion",
    "TransferData",
    "TransferInitiation",
    "TransferType",
    "WitnessSignature",
    "WorkflowPolicy",
    "authorize",
    "decode_approval_data",
    "decode_transfer_data",
    "encode_approval_data",
    "encode_transfer_data",
]
