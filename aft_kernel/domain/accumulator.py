"""
Workflow data accumulator (``aft_kernel.domain.accumulator``).

Responsibility
--------------
Typed, immutable records of everything a request accumulates as it moves
through the workflow: approval-stage signatures (``approvalData``) and
transfer execution records (``transferData``).  Each record is a frozen
dataclass validated at construction; the persisted form is canonical
camelCase JSON.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Write-once: an approval stage signs at most once per round, and each
  ``transferData`` key is written at most once.  ``with_signature`` and
  ``with_entry`` raise ``ValueError`` on a second write.
* Additive: writing one key returns a new value that carries every other
  key unchanged.
* Rounds: an approval round is opened per submission.  Earlier rounds are
  closed (approved, rejected, withdrawn, cancelled) and kept as history.
* Server timestamps: ``signed_at`` / ``recorded_at`` are supplied by the
  caller's Clock; client-supplied dates are stored separately as text.

Failure modes
-------------
* ``ValueError`` from any constructor when a field is missing or invalid.
* ``CorruptAccumulatorError`` from ``decode_*`` when persisted JSON is
  malformed or does not describe valid records.  There is no fallback to
  an empty value.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Mapping
from uuid import UUID

from aft_kernel.domain.statuses import APPROVAL_ROLES, Role, TransferType
from aft_kernel.exceptions import CorruptAccumulatorError
from aft_kernel.utils.hashing import canonicalize_json

WITNESS_ROLE = "media_custodian_witness"


# =========================================================================
# Field helpers
# =========================================================================


def _require_text(value: Any, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")


def _optional_text(value: Any, name: str) -> None:
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{name} must be a string")


def _require_datetime(value: Any, name: str) -> None:
    if not isinstance(value, datetime):
        raise ValueError(f"{name} must be a datetime")


def _require_count(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be a non-negative integer")


def _mapping(raw: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise ValueError(f"{name} must be an object, got {type(raw).__name__}")
    return raw


def _check_keys(
    raw: Mapping[str, Any],
    name: str,
    required: frozenset[str],
    optional: frozenset[str] = frozenset(),
) -> None:
    missing = required - raw.keys()
    if missing:
        raise ValueError(f"{name} missing keys: {', '.join(sorted(missing))}")
    unknown = raw.keys() - required - optional
    if unknown:
        raise ValueError(f"{name} has unknown keys: {', '.join(sorted(unknown))}")


def _parse_datetime(raw: Any, name: str) -> datetime:
    if not isinstance(raw, str):
        raise ValueError(f"{name} must be an ISO-8601 string")
    return datetime.fromisoformat(raw)


def _parse_optional_datetime(raw: Any, name: str) -> datetime | None:
    return None if raw is None else _parse_datetime(raw, name)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# =========================================================================
# Signer identity
# =========================================================================


@dataclass(frozen=True)
class SignerInfo:
    """Who wrote a sub-record, and in which role they acted."""

    id: UUID
    name: str
    email: str
    role: Role

    def __post_init__(self) -> None:
        if not isinstance(self.id, UUID):
            raise ValueError("signer id must be a UUID")
        _require_text(self.name, "signer name")
        if not isinstance(self.email, str):
            raise ValueError("signer email must be a string")
        object.__setattr__(self, "role", Role(self.role))

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> SignerInfo:
        data = _mapping(raw, "signer")
        _check_keys(data, "signer", frozenset({"id", "name", "email", "role"}))
        return cls(
            id=UUID(data["id"]),
            name=data["name"],
            email=data["email"],
            role=data["role"],
        )


# =========================================================================
# approvalData
# =========================================================================


class RoundOutcome(str, Enum):
    """How an approval round ended."""

    OPEN = "open"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SubmissionRecord:
    """Requestor's signature and terms acknowledgement at submit time."""

    signer: SignerInfo
    signature: str
    terms_accepted: bool
    submitted_at: datetime

    def __post_init__(self) -> None:
        _require_text(self.signature, "submission signature")
        if self.terms_accepted is not True:
            raise ValueError("terms must be accepted to submit")
        _require_datetime(self.submitted_at, "submitted_at")

    def to_wire(self) -> dict[str, Any]:
        return {
            "signer": self.signer.to_wire(),
            "signature": self.signature,
            "termsAccepted": self.terms_accepted,
            "submittedAt": _iso(self.submitted_at),
        }

    @classmethod
    def from_wire(cls, raw: Any) -> SubmissionRecord:
        data = _mapping(raw, "submission")
        _check_keys(
            data, "submission",
            frozenset({"signer", "signature", "termsAccepted", "submittedAt"}),
        )
        return cls(
            signer=SignerInfo.from_wire(data["signer"]),
            signature=data["signature"],
            terms_accepted=data["termsAccepted"],
            submitted_at=_parse_datetime(data["submittedAt"], "submittedAt"),
        )


@dataclass(frozen=True)
class StageSignature:
    """One approval stage's sign-off.  Keyed by ``stage`` within a round."""

    stage: Role
    signer: SignerInfo
    signed_at: datetime
    notes: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "stage", Role(self.stage))
        if self.stage not in APPROVAL_ROLES:
            raise ValueError(f"'{self.stage.value}' is not an approval stage")
        _require_datetime(self.signed_at, "signed_at")
        if not isinstance(self.notes, str):
            raise ValueError("notes must be a string")

    def to_wire(self) -> dict[str, Any]:
        return {
            "signer": self.signer.to_wire(),
            "signedAt": _iso(self.signed_at),
            "notes": self.notes,
        }

    @classmethod
    def from_wire(cls, stage: str, raw: Any) -> StageSignature:
        data = _mapping(raw, f"signature[{stage}]")
        _check_keys(
            data, f"signature[{stage}]",
            frozenset({"signer", "signedAt", "notes"}),
        )
        return cls(
            stage=Role(stage),
            signer=SignerInfo.from_wire(data["signer"]),
            signed_at=_parse_datetime(data["signedAt"], "signedAt"),
            notes=data["notes"],
        )


@dataclass(frozen=True)
class RejectionRecord:
    """Who rejected the round, at which stage, and why."""

    stage: Role
    signer: SignerInfo
    reason: str
    rejected_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "stage", Role(self.stage))
        _require_text(self.reason, "rejection reason")
        _require_datetime(self.rejected_at, "rejected_at")

    def to_wire(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "signer": self.signer.to_wire(),
            "reason": self.reason,
            "rejectedAt": _iso(self.rejected_at),
        }

    @classmethod
    def from_wire(cls, raw: Any) -> RejectionRecord:
        data = _mapping(raw, "rejection")
        _check_keys(
            data, "rejection",
            frozenset({"stage", "signer", "reason", "rejectedAt"}),
        )
        return cls(
            stage=data["stage"],
            signer=SignerInfo.from_wire(data["signer"]),
            reason=data["reason"],
            rejected_at=_parse_datetime(data["rejectedAt"], "rejectedAt"),
        )


@dataclass(frozen=True)
class ApprovalRound:
    """
    One pass through the approval chain.

    ``chain`` is captured when the round opens, so a later configuration
    change does not re-route a request already under review.
    """

    number: int
    transfer_type: TransferType
    chain: tuple[Role, ...]
    submission: SubmissionRecord | None = None
    signatures: tuple[StageSignature, ...] = ()
    outcome: RoundOutcome = RoundOutcome.OPEN
    rejection: RejectionRecord | None = None
    closed_at: datetime | None = None

    def __post_init__(self) -> None:
        if isinstance(self.number, bool) or not isinstance(self.number, int) or self.number < 1:
            raise ValueError("round number must be a positive integer")
        object.__setattr__(self, "transfer_type", TransferType(self.transfer_type))
        object.__setattr__(self, "chain", tuple(Role(r) for r in self.chain))
        object.__setattr__(self, "outcome", RoundOutcome(self.outcome))
        if not self.chain:
            raise ValueError("approval chain must not be empty")
        if len(set(self.chain)) != len(self.chain):
            raise ValueError("approval chain must not repeat a role")
        if any(role not in APPROVAL_ROLES for role in self.chain):
            raise ValueError("approval chain may only contain dao, approver, cpso")

        stages = [sig.stage for sig in self.signatures]
        if len(set(stages)) != len(stages):
            raise ValueError("an approval stage may sign only once per round")
        if any(stage not in self.chain for stage in stages):
            raise ValueError("signature for a stage outside the approval chain")

        if (self.outcome == RoundOutcome.REJECTED) != (self.rejection is not None):
            raise ValueError("rejection record required exactly when outcome is rejected")
        if self.outcome == RoundOutcome.APPROVED and set(stages) != set(self.chain):
            raise ValueError("approved round must carry every stage signature")
        if self.outcome == RoundOutcome.OPEN and self.closed_at is not None:
            raise ValueError("open round cannot have closed_at")

    @property
    def is_open(self) -> bool:
        return self.outcome == RoundOutcome.OPEN

    @property
    def signed_roles(self) -> frozenset[Role]:
        return frozenset(sig.stage for sig in self.signatures)

    @property
    def signer_ids(self) -> frozenset[UUID]:
        ids = {sig.signer.id for sig in self.signatures}
        if self.rejection is not None:
            ids.add(self.rejection.signer.id)
        return frozenset(ids)

    def signature_for(self, stage: Role) -> StageSignature | None:
        for sig in self.signatures:
            if sig.stage == stage:
                return sig
        return None

    def with_signature(self, signature: StageSignature) -> ApprovalRound:
        if not self.is_open:
            raise ValueError(f"round {self.number} is {self.outcome.value}")
        if signature.stage in self.signed_roles:
            raise ValueError(f"stage '{signature.stage.value}' already signed")
        return replace(self, signatures=self.signatures + (signature,))

    def close(
        self,
        outcome: RoundOutcome,
        closed_at: datetime,
        rejection: RejectionRecord | None = None,
    ) -> ApprovalRound:
        if not self.is_open:
            raise ValueError(f"round {self.number} is already {self.outcome.value}")
        if outcome == RoundOutcome.OPEN:
            raise ValueError("cannot close a round as open")
        return replace(self, outcome=outcome, rejection=rejection, closed_at=closed_at)

    def to_wire(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "transferType": self.transfer_type.value,
            "chain": [role.value for role in self.chain],
            "submission": self.submission.to_wire() if self.submission else None,
            "signatures": {
                sig.stage.value: sig.to_wire() for sig in self.signatures
            },
            "outcome": self.outcome.value,
            "rejection": self.rejection.to_wire() if self.rejection else None,
            "closedAt": _iso(self.closed_at),
        }

    @classmethod
    def from_wire(cls, raw: Any) -> ApprovalRound:
        data = _mapping(raw, "round")
        _check_keys(
            data, "round",
            frozenset({"number", "transferType", "chain", "signatures", "outcome"}),
            frozenset({"submission", "rejection", "closedAt"}),
        )
        chain = data["chain"]
        if not isinstance(chain, list):
            raise ValueError("chain must be a list")
        signatures = _mapping(data["signatures"], "signatures")
        # Order signatures by chain position so round-trips are stable.
        ordered = sorted(
            signatures.items(),
            key=lambda item: chain.index(item[0]) if item[0] in chain else len(chain),
        )
        return cls(
            number=data["number"],
            transfer_type=data["transferType"],
            chain=tuple(chain),
            submission=(
                SubmissionRecord.from_wire(data["submission"])
                if data.get("submission") is not None else None
            ),
            signatures=tuple(
                StageSignature.from_wire(stage, sig) for stage, sig in ordered
            ),
            outcome=data["outcome"],
            rejection=(
                RejectionRecord.from_wire(data["rejection"])
                if data.get("rejection") is not None else None
            ),
            closed_at=_parse_optional_datetime(data.get("closedAt"), "closedAt"),
        )


@dataclass(frozen=True)
class ApprovalData:
    """All approval rounds of a request, oldest first."""

    rounds: tuple[ApprovalRound, ...] = ()

    def __post_init__(self) -> None:
        for index, rnd in enumerate(self.rounds, start=1):
            if rnd.number != index:
                raise ValueError(
                    f"approval rounds must be numbered consecutively, "
                    f"found {rnd.number} at position {index}"
                )
            if rnd.is_open and index != len(self.rounds):
                raise ValueError("only the latest approval round may be open")

    @property
    def current_round(self) -> ApprovalRound | None:
        """The open round, if any."""
        if self.rounds and self.rounds[-1].is_open:
            return self.rounds[-1]
        return None

    @property
    def last_round(self) -> ApprovalRound | None:
        return self.rounds[-1] if self.rounds else None

    @property
    def last_outcome(self) -> RoundOutcome | None:
        return self.rounds[-1].outcome if self.rounds else None

    @property
    def participant_ids(self) -> frozenset[UUID]:
        """Everyone who signed or rejected in any round."""
        ids: set[UUID] = set()
        for rnd in self.rounds:
            ids |= rnd.signer_ids
        return frozenset(ids)

    def open_round(
        self,
        transfer_type: TransferType,
        chain: tuple[Role, ...],
        submission: SubmissionRecord,
    ) -> ApprovalData:
        if self.current_round is not None:
            raise ValueError("an approval round is already open")
        rnd = ApprovalRound(
            number=len(self.rounds) + 1,
            transfer_type=transfer_type,
            chain=chain,
            submission=submission,
        )
        return replace(self, rounds=self.rounds + (rnd,))

    def with_current_round(self, rnd: ApprovalRound) -> ApprovalData:
        """Replace the open round with an updated copy of itself."""
        current = self.current_round
        if current is None or current.number != rnd.number:
            raise ValueError("no matching open approval round")
        return replace(self, rounds=self.rounds[:-1] + (rnd,))

    def to_wire(self) -> dict[str, Any]:
        return {"rounds": [rnd.to_wire() for rnd in self.rounds]}

    @classmethod
    def from_wire(cls, raw: Any) -> ApprovalData:
        data = _mapping(raw, "approvalData")
        _check_keys(data, "approvalData", frozenset({"rounds"}))
        rounds = data["rounds"]
        if not isinstance(rounds, list):
            raise ValueError("rounds must be a list")
        return cls(rounds=tuple(ApprovalRound.from_wire(r) for r in rounds))


# =========================================================================
# transferData entries
# =========================================================================


@dataclass(frozen=True)
class ScanResult:
    """Antivirus scan on one side of the transfer."""

    performed: bool
    files_scanned: int = 0
    threats_found: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.performed, bool):
            raise ValueError("performed must be a boolean")
        _require_count(self.files_scanned, "filesScanned")
        _require_count(self.threats_found, "threatsFound")
        if not self.performed and (self.files_scanned or self.threats_found):
            raise ValueError("a scan that was not performed cannot report counts")

    def to_wire(self) -> dict[str, Any]:
        return {
            "performed": self.performed,
            "filesScanned": self.files_scanned,
            "threatsFound": self.threats_found,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> ScanResult:
        data = _mapping(raw, "scan")
        _check_keys(
            data, "scan",
            frozenset({"performed"}),
            frozenset({"filesScanned", "threatsFound"}),
        )
        return cls(
            performed=data["performed"],
            files_scanned=data.get("filesScanned", 0),
            threats_found=data.get("threatsFound", 0),
        )


@dataclass(frozen=True)
class AntivirusScan:
    KEY: ClassVar[str] = "antivirusScan"

    origination: ScanResult
    destination: ScanResult
    recorded_by: SignerInfo
    recorded_at: datetime
    scan_date: str | None = None

    def __post_init__(self) -> None:
        _require_datetime(self.recorded_at, "recorded_at")
        _optional_text(self.scan_date, "scan date")

    @property
    def threats_found(self) -> int:
        return self.origination.threats_found + self.destination.threats_found

    def to_wire(self) -> dict[str, Any]:
        return {
            "originationScan": self.origination.to_wire(),
            "destinationScan": self.destination.to_wire(),
            "recordedBy": self.recorded_by.to_wire(),
            "recordedAt": _iso(self.recorded_at),
            "scanDate": self.scan_date,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> AntivirusScan:
        data = _mapping(raw, cls.KEY)
        _check_keys(
            data, cls.KEY,
            frozenset({"originationScan", "destinationScan", "recordedBy", "recordedAt"}),
            frozenset({"scanDate"}),
        )
        return cls(
            origination=ScanResult.from_wire(data["originationScan"]),
            destination=ScanResult.from_wire(data["destinationScan"]),
            recorded_by=SignerInfo.from_wire(data["recordedBy"]),
            recorded_at=_parse_datetime(data["recordedAt"], "recordedAt"),
            scan_date=data.get("scanDate"),
        )


@dataclass(frozen=True)
class TransferInitiation:
    KEY: ClassVar[str] = "transferInitiation"

    initiated_by: SignerInfo
    initiated_at: datetime
    notes: str | None = None

    def __post_init__(self) -> None:
        _require_datetime(self.initiated_at, "initiated_at")
        _optional_text(self.notes, "notes")

    def to_wire(self) -> dict[str, Any]:
        return {
            "initiatedBy": self.initiated_by.to_wire(),
            "initiatedAt": _iso(self.initiated_at),
            "notes": self.notes,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> TransferInitiation:
        data = _mapping(raw, cls.KEY)
        _check_keys(
            data, cls.KEY,
            frozenset({"initiatedBy", "initiatedAt"}),
            frozenset({"notes"}),
        )
        return cls(
            initiated_by=SignerInfo.from_wire(data["initiatedBy"]),
            initiated_at=_parse_datetime(data["initiatedAt"], "initiatedAt"),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class TransferCompletion:
    """
    DTA's record that an initiated transfer finished.

    ``transfer_date`` and ``completed_date`` are the DTA's own dates and
    are kept as text; ``completed_at`` is server time.  Two-person
    integrity must have been maintained for the record to exist at all.
    """

    KEY: ClassVar[str] = "transferCompletion"

    completed_by: SignerInfo
    completed_at: datetime
    files_transferred: int
    transfer_date: str
    dta_signature: str
    tpi_maintained: bool = True
    completed_date: str | None = None
    procedures_followed: bool = True

    def __post_init__(self) -> None:
        _require_datetime(self.completed_at, "completed_at")
        _require_count(self.files_transferred, "files_transferred")
        if self.files_transferred < 1:
            raise ValueError("at least one file must have been transferred")
        _require_text(self.transfer_date, "transfer_date")
        _require_text(self.dta_signature, "DTA signature")
        if self.tpi_maintained is not True:
            raise ValueError("two-person integrity must be maintained")
        _optional_text(self.completed_date, "completed_date")
        if not isinstance(self.procedures_followed, bool):
            raise ValueError("procedures_followed must be a boolean")

    def to_wire(self) -> dict[str, Any]:
        return {
            "completedBy": self.completed_by.to_wire(),
            "completedAt": _iso(self.completed_at),
            "filesTransferred": self.files_transferred,
            "transferDate": self.transfer_date,
            "dtaSignature": self.dta_signature,
            "tpiMaintained": self.tpi_maintained,
            "completedDate": self.completed_date,
            "proceduresFollowed": self.procedures_followed,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> TransferCompletion:
        data = _mapping(raw, cls.KEY)
        _check_keys(
            data, cls.KEY,
            frozenset({
                "completedBy", "completedAt", "filesTransferred", "transferDate",
                "dtaSignature", "tpiMaintained",
            }),
            frozenset({"completedDate", "proceduresFollowed"}),
        )
        return cls(
            completed_by=SignerInfo.from_wire(data["completedBy"]),
            completed_at=_parse_datetime(data["completedAt"], "completedAt"),
            files_transferred=data["filesTransferred"],
            transfer_date=data["transferDate"],
            dta_signature=data["dtaSignature"],
            tpi_maintained=data["tpiMaintained"],
            completed_date=data.get("completedDate"),
            procedures_followed=data.get("proceduresFollowed", True),
        )


@dataclass(frozen=True)
class DtaSignature:
    KEY: ClassVar[str] = "dtaSignature"

    signer: SignerInfo
    signature: str
    signed_at: datetime
    assigned_sme_id: UUID
    assigned_media_custodian_id: UUID
    terms_acknowledged: bool = True
    transfer_notes: str | None = None
    transfer_date: str | None = None
    actual_start_date: str | None = None
    actual_end_date: str | None = None
    verification_results: str | None = None

    def __post_init__(self) -> None:
        _require_text(self.signature, "DTA signature")
        _require_datetime(self.signed_at, "signed_at")
        if not isinstance(self.assigned_sme_id, UUID):
            raise ValueError("assigned SME id must be a UUID")
        if not isinstance(self.assigned_media_custodian_id, UUID):
            raise ValueError("assigned media custodian id must be a UUID")
        if self.terms_acknowledged is not True:
            raise ValueError("DTA must acknowledge the transfer terms")
        for name in (
            "transfer_notes", "transfer_date", "actual_start_date",
            "actual_end_date", "verification_results",
        ):
            _optional_text(getattr(self, name), name)

    def to_wire(self) -> dict[str, Any]:
        return {
            "signer": self.signer.to_wire(),
            "signature": self.signature,
            "signedAt": _iso(self.signed_at),
            "assignedSmeId": str(self.assigned_sme_id),
            "assignedMediaCustodianId": str(self.assigned_media_custodian_id),
            "termsAcknowledged": self.terms_acknowledged,
            "transferNotes": self.transfer_notes,
            "transferDate": self.transfer_date,
            "actualStartDate": self.actual_start_date,
            "actualEndDate": self.actual_end_date,
            "verificationResults": self.verification_results,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> DtaSignature:
        data = _mapping(raw, cls.KEY)
        _check_keys(
            data, cls.KEY,
            frozenset({
                "signer", "signature", "signedAt", "assignedSmeId",
                "assignedMediaCustodianId", "termsAcknowledged",
            }),
            frozenset({
                "transferNotes", "transferDate", "actualStartDate",
                "actualEndDate", "verificationResults",
            }),
        )
        return cls(
            signer=SignerInfo.from_wire(data["signer"]),
            signature=data["signature"],
            signed_at=_parse_datetime(data["signedAt"], "signedAt"),
            assigned_sme_id=UUID(data["assignedSmeId"]),
            assigned_media_custodian_id=UUID(data["assignedMediaCustodianId"]),
            terms_acknowledged=data["termsAcknowledged"],
            transfer_notes=data.get("transferNotes"),
            transfer_date=data.get("transferDate"),
            actual_start_date=data.get("actualStartDate"),
            actual_end_date=data.get("actualEndDate"),
            verification_results=data.get("verificationResults"),
        )


@dataclass(frozen=True)
class TechnicalValidation:
    """SME's technical review notes.  Free text per check."""

    antivirus_results: str | None = None
    integrity_check: str | None = None
    format_validation: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        for name in ("antivirus_results", "integrity_check", "format_validation", "notes"):
            _optional_text(getattr(self, name), name)

    def to_wire(self) -> dict[str, Any]:
        return {
            "antivirusResults": self.antivirus_results,
            "integrityCheck": self.integrity_check,
            "formatValidation": self.format_validation,
            "notes": self.notes,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> TechnicalValidation:
        data = _mapping(raw, "technicalValidation")
        _check_keys(
            data, "technicalValidation",
            frozenset(),
            frozenset({"antivirusResults", "integrityCheck", "formatValidation", "notes"}),
        )
        return cls(
            antivirus_results=data.get("antivirusResults"),
            integrity_check=data.get("integrityCheck"),
            format_validation=data.get("formatValidation"),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class SmeSignature:
    KEY: ClassVar[str] = "smeSignature"

    signer: SignerInfo
    signature: str
    signed_at: datetime
    comments: str | None = None
    sme_date: str | None = None
    technical_validation: TechnicalValidation | None = None

    def __post_init__(self) -> None:
        _require_text(self.signature, "SME signature")
        _require_datetime(self.signed_at, "signed_at")
        _optional_text(self.comments, "comments")
        _optional_text(self.sme_date, "date")

    def to_wire(self) -> dict[str, Any]:
        return {
            "signer": self.signer.to_wire(),
            "signature": self.signature,
            "signedAt": _iso(self.signed_at),
            "comments": self.comments,
            "date": self.sme_date,
            "technicalValidation": (
                self.technical_validation.to_wire()
                if self.technical_validation else None
            ),
        }

    @classmethod
    def from_wire(cls, raw: Any) -> SmeSignature:
        data = _mapping(raw, cls.KEY)
        _check_keys(
            data, cls.KEY,
            frozenset({"signer", "signature", "signedAt"}),
            frozenset({"comments", "date", "technicalValidation"}),
        )
        tv = data.get("technicalValidation")
        return cls(
            signer=SignerInfo.from_wire(data["signer"]),
            signature=data["signature"],
            signed_at=_parse_datetime(data["signedAt"], "signedAt"),
            comments=data.get("comments"),
            sme_date=data.get("date"),
            technical_validation=TechnicalValidation.from_wire(tv) if tv is not None else None,
        )


class DispositionType(str, Enum):
    """What happened to the transfer media."""

    DESTROY = "destroy"
    RETURN = "return"
    ARCHIVE = "archive"
    SANITIZE = "sanitize"

    @property
    def requires_second_custodian(self) -> bool:
        return self is DispositionType.DESTROY


@dataclass(frozen=True)
class MediaCustodianSignature:
    KEY: ClassVar[str] = "mediaCustodianSignature"

    signer: SignerInfo
    signature: str
    signed_at: datetime
    disposition_type: DispositionType
    disposition_method: str | None = None
    disposition_notes: str | None = None
    disposition_date: str | None = None

    def __post_init__(self) -> None:
        _require_text(self.signature, "media custodian signature")
        _require_datetime(self.signed_at, "signed_at")
        object.__setattr__(self, "disposition_type", DispositionType(self.disposition_type))
        for name in ("disposition_method", "disposition_notes", "disposition_date"):
            _optional_text(getattr(self, name), name)

    def to_wire(self) -> dict[str, Any]:
        return {
            "signer": self.signer.to_wire(),
            "signature": self.signature,
            "signedAt": _iso(self.signed_at),
            "dispositionType": self.disposition_type.value,
            "dispositionMethod": self.disposition_method,
            "dispositionNotes": self.disposition_notes,
            "dispositionDate": self.disposition_date,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> MediaCustodianSignature:
        data = _mapping(raw, cls.KEY)
        _check_keys(
            data, cls.KEY,
            frozenset({"signer", "signature", "signedAt", "dispositionType"}),
            frozenset({"dispositionMethod", "dispositionNotes", "dispositionDate"}),
        )
        return cls(
            signer=SignerInfo.from_wire(data["signer"]),
            signature=data["signature"],
            signed_at=_parse_datetime(data["signedAt"], "signedAt"),
            disposition_type=data["dispositionType"],
            disposition_method=data.get("dispositionMethod"),
            disposition_notes=data.get("dispositionNotes"),
            disposition_date=data.get("dispositionDate"),
        )


@dataclass(frozen=True)
class WitnessSignature:
    """Second custodian for two-person integrity.  Identified by name only."""

    KEY: ClassVar[str] = "secondMediaCustodianSignature"

    name: str
    signature: str
    signed_at: datetime
    role: str = WITNESS_ROLE

    def __post_init__(self) -> None:
        _require_text(self.name, "second custodian name")
        _require_text(self.signature, "second custodian signature")
        _require_datetime(self.signed_at, "signed_at")
        if self.role != WITNESS_ROLE:
            raise ValueError(f"witness role must be '{WITNESS_ROLE}'")

    def to_wire(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "signature": self.signature,
            "signedAt": _iso(self.signed_at),
            "role": self.role,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> WitnessSignature:
        data = _mapping(raw, cls.KEY)
        _check_keys(data, cls.KEY, frozenset({"name", "signature", "signedAt", "role"}))
        return cls(
            name=data["name"],
            signature=data["signature"],
            signed_at=_parse_datetime(data["signedAt"], "signedAt"),
            role=data["role"],
        )


@dataclass(frozen=True)
class CompletionRecord:
    """Server time the workflow finished.  Persisted as a bare timestamp."""

    KEY: ClassVar[str] = "completedAt"

    completed_at: datetime

    def __post_init__(self) -> None:
        _require_datetime(self.completed_at, "completed_at")

    def to_wire(self) -> str:
        return self.completed_at.isoformat()

    @classmethod
    def from_wire(cls, raw: Any) -> CompletionRecord:
        return cls(completed_at=_parse_datetime(raw, cls.KEY))


TransferEntry = (
    AntivirusScan
    | TransferInitiation
    | TransferCompletion
    | DtaSignature
    | SmeSignature
    | MediaCustodianSignature
    | WitnessSignature
    | CompletionRecord
)

# transferData key -> (attribute, entry type), in workflow order.
_TRANSFER_FIELDS: dict[str, tuple[str, type]] = {
    AntivirusScan.KEY: ("antivirus_scan", AntivirusScan),
    TransferInitiation.KEY: ("transfer_initiation", TransferInitiation),
    TransferCompletion.KEY: ("transfer_completion", TransferCompletion),
    DtaSignature.KEY: ("dta_signature", DtaSignature),
    SmeSignature.KEY: ("sme_signature", SmeSignature),
    MediaCustodianSignature.KEY: ("media_custodian_signature", MediaCustodianSignature),
    WitnessSignature.KEY: ("second_media_custodian_signature", WitnessSignature),
    CompletionRecord.KEY: ("completed_at", CompletionRecord),
}

TRANSFER_DATA_KEYS: tuple[str, ...] = tuple(_TRANSFER_FIELDS)


@dataclass(frozen=True)
class TransferData:
    """Transfer execution records, each written once by its role."""

    antivirus_scan: AntivirusScan | None = None
    transfer_initiation: TransferInitiation | None = None
    transfer_completion: TransferCompletion | None = None
    dta_signature: DtaSignature | None = None
    sme_signature: SmeSignature | None = None
    media_custodian_signature: MediaCustodianSignature | None = None
    second_media_custodian_signature: WitnessSignature | None = None
    completed_at: CompletionRecord | None = None

    def __post_init__(self) -> None:
        for key, (attr, entry_type) in _TRANSFER_FIELDS.items():
            value = getattr(self, attr)
            if value is not None and not isinstance(value, entry_type):
                raise ValueError(f"{key} must be a {entry_type.__name__}")

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> TransferEntry | None:
        if key not in _TRANSFER_FIELDS:
            raise KeyError(key)
        return getattr(self, _TRANSFER_FIELDS[key][0])

    def keys(self) -> tuple[str, ...]:
        """Keys written so far, in workflow order."""
        return tuple(key for key in TRANSFER_DATA_KEYS if self.has(key))

    def with_entry(self, entry: TransferEntry) -> TransferData:
        """Return a copy with ``entry`` added under its key."""
        key = type(entry).KEY
        if self.has(key):
            raise ValueError(f"'{key}' already recorded")
        return replace(self, **{_TRANSFER_FIELDS[key][0]: entry})

    @property
    def participant_ids(self) -> frozenset[UUID]:
        ids: set[UUID] = set()
        for entry in (
            self.antivirus_scan and self.antivirus_scan.recorded_by,
            self.transfer_initiation and self.transfer_initiation.initiated_by,
            self.transfer_completion and self.transfer_completion.completed_by,
            self.dta_signature and self.dta_signature.signer,
            self.sme_signature and self.sme_signature.signer,
            self.media_custodian_signature and self.media_custodian_signature.signer,
        ):
            if entry:
                ids.add(entry.id)
        return frozenset(ids)

    def to_wire(self) -> dict[str, Any]:
        return {key: self.get(key).to_wire() for key in self.keys()}

    @classmethod
    def from_wire(cls, raw: Any) -> TransferData:
        data = _mapping(raw, "transferData")
        _check_keys(data, "transferData", frozenset(), frozenset(_TRANSFER_FIELDS))
        kwargs = {}
        for key, value in data.items():
            if value is None:
                continue
            attr, entry_type = _TRANSFER_FIELDS[key]
            kwargs[attr] = entry_type.from_wire(value)
        return cls(**kwargs)


# =========================================================================
# Codec
# =========================================================================

_DECODE_ERRORS = (ValueError, KeyError, TypeError, AttributeError)


def decode_approval_data(raw: str | None, request_id: int | None = None) -> ApprovalData:
    """
    Decode persisted ``approvalData``.

    NULL or empty text is a request that was never submitted.  Anything
    else must decode fully.

    Raises:
        CorruptAccumulatorError: malformed JSON or invalid records.
    """
    if raw is None or not raw.strip():
        return ApprovalData()
    try:
        return ApprovalData.from_wire(json.loads(raw))
    except _DECODE_ERRORS as exc:
        raise CorruptAccumulatorError("approvalData", str(exc), request_id=request_id) from exc


def decode_transfer_data(raw: str | None, request_id: int | None = None) -> TransferData:
    """
    Decode persisted ``transferData``.

    Raises:
        CorruptAccumulatorError: malformed JSON or invalid records.
    """
    if raw is None or not raw.strip():
        return TransferData()
    try:
        return TransferData.from_wire(json.loads(raw))
    except _DECODE_ERRORS as exc:
        raise CorruptAccumulatorError("transferData", str(exc), request_id=request_id) from exc


def encode_approval_data(data: ApprovalData) -> str:
    return canonicalize_json(data.to_wire())


def encode_transfer_data(data: TransferData) -> str:
    return canonicalize_json(data.to_wire())
