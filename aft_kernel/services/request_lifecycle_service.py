"""
RequestLifecycleService -- every write operation on an AFT request.

Responsibility:
    Runs each request operation as one unit of work:

        load (row lock) -> authorize -> validate -> mutate -> audit

    and returns a frozen RequestSnapshot.  This is the only code that
    changes a request's status or its workflow accumulators.

Architecture position:
    Kernel > Services -- imperative shell.  Pure decisions live in
    domain/ (statuses, authorization, accumulator); this module loads
    state, applies those decisions and writes the audit trail.

Invariants enforced:
    - Check order is NotFound, Unauthorized, Forbidden, InvalidState,
      Validation.  Every check runs before the first mutation, so a
      refused operation leaves the session untouched.
    - Every status write goes through ensure_transition() (via
      AftRequestModel.set_status) and is re-checked by the ORM listener.
    - Each operation appends exactly one audit entry, except submit with
      automatic dispatch, which appends SUBMITTED/RESUBMITTED and then
      DISPATCHED.
    - The request row is read with SELECT ... FOR UPDATE and
      populate_existing; the version column makes the UPDATE conditional.

Failure modes:
    - RequestNotFoundError, UnauthorizedError, ForbiddenError (and
      subclasses), InvalidStateError (and subclasses), ValidationError.
    - ConcurrentTransitionError when another transaction changed the row
      after it was read (StaleDataError on flush).
    - PersistenceError wrapping any other SQLAlchemyError.  Not retried.
    - CorruptAccumulatorError when persisted accumulator text is invalid.

Audit relevance:
    Every change is recorded by AuditorService in the same flush
    sequence.  Rejections and resubmissions are additionally recorded by
    SecurityAuditService.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from random import Random
from typing import Any, Callable, Generator, Mapping, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from aft_kernel.domain.accumulator import (
    AntivirusScan,
    CompletionRecord,
    DispositionType,
    DtaSignature,
    MediaCustodianSignature,
    RejectionRecord,
    RoundOutcome,
    ScanResult,
    SmeSignature,
    StageSignature,
    SubmissionRecord,
    TechnicalValidation,
    TransferCompletion,
    TransferData,
    TransferInitiation,
    WitnessSignature,
)
from aft_kernel.domain.authorization import (
    AuthorizationDecision,
    Operation,
    authorize,
)
from aft_kernel.domain.clock import Clock
from aft_kernel.domain.dtos import Actor, RequestSnapshot
from aft_kernel.domain.policy import DEFAULT_WORKFLOW_POLICY, WorkflowPolicy
from aft_kernel.domain.request_number import generate_request_number
from aft_kernel.domain.statuses import (
    RequestStatus,
    Role,
    TransferType,
    first_stage_status,
    next_approval_status,
)
from aft_kernel.exceptions import (
    AccumulatorEntryExistsError,
    AftKernelError,
    ConcurrentTransitionError,
    ForbiddenError,
    InvalidStateError,
    PersistenceError,
    RequestNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from aft_kernel.logging_config import LogContext, get_logger
from aft_kernel.models.audit_log import AuditAction
from aft_kernel.models.request import AftRequestModel
from aft_kernel.models.security_event import SecurityEventType
from aft_kernel.services.auditor_service import AuditorService
from aft_kernel.services.base import BaseService
from aft_kernel.services.security_audit_service import SecurityAuditService
from aft_kernel.services.user_service import UserService

logger = get_logger("services.request_lifecycle")

S = RequestStatus
T = TypeVar("T")

REQUEST_NUMBER_ATTEMPTS = 5

EDITABLE_FIELDS: frozenset[str] = frozenset({
    "transfer_type",
    "classification",
    "transfer_purpose",
    "source_system",
    "dest_system",
    "details",
})

_REQUIRED_TEXT_FIELDS = (
    "classification",
    "transfer_purpose",
    "source_system",
    "dest_system",
)

# destroy/sanitize leave no media to hand back; return/archive complete normally.
DISPOSITION_OUTCOMES: dict[DispositionType, RequestStatus] = {
    DispositionType.DESTROY: S.DISPOSED,
    DispositionType.SANITIZE: S.DISPOSED,
    DispositionType.RETURN: S.COMPLETED,
    DispositionType.ARCHIVE: S.COMPLETED,
}


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------


def _validated(field: str, build: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Build a domain value; construction errors become ValidationError."""
    try:
        return build(*args, **kwargs)
    except (ValueError, KeyError) as exc:
        raise ValidationError(field, str(exc)) from exc


def _require_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "must be a non-empty string")
    return value.strip()


def _transfer_type(value: Any) -> TransferType:
    return _validated("transfer_type", TransferType, value)


def _details(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError("details", "must be a mapping")
    return dict(value)


def _scan_result(field: str, value: ScanResult | Mapping[str, Any]) -> ScanResult:
    if isinstance(value, ScanResult):
        return value
    if not isinstance(value, Mapping):
        raise ValidationError(field, "must be a scan result")
    return _validated(field, ScanResult.from_wire, value)


def _technical_validation(
    value: TechnicalValidation | Mapping[str, Any] | None,
) -> TechnicalValidation | None:
    if value is None or isinstance(value, TechnicalValidation):
        return value
    if not isinstance(value, Mapping):
        raise ValidationError("technical_validation", "must be a mapping")
    return _validated("technical_validation", TechnicalValidation.from_wire, value)


def _note(verb: str, actor: Actor, role: Role, detail: str | None = None) -> str:
    note = f"Request {verb} by {actor.name} ({role.value})"
    return f"{note}: {detail}" if detail else note


@dataclass
class _OperationScope:
    """What the failure handler needs to know about the running operation."""

    operation: Operation
    request_id: int | None
    observed_status: RequestStatus | None = None


class RequestLifecycleService(BaseService[AftRequestModel]):
    """
    Contract:
        Each public method performs one operation on one request and
        flushes.  The caller commits (``session_scope()``) or rolls back.

    Guarantees:
        - Nothing is mutated unless every precondition holds.
        - The returned snapshot reflects the flushed state.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT list or count requests; see RequestSelector.
        - Does NOT retry on ConcurrentTransitionError.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: WorkflowPolicy | None = None,
        rng: Random | None = None,
    ):
        super().__init__(session, clock)
        self._policy = policy or DEFAULT_WORKFLOW_POLICY
        self._rng = rng
        self._auditor = AuditorService(session, self.clock)
        self._security = SecurityAuditService(
            session, self.clock, self._policy.security_retention_days,
        )
        self._users = UserService(session, self.clock)

    @property
    def policy(self) -> WorkflowPolicy:
        return self._policy

    # -----------------------------------------------------------------
    # Scaffolding
    # -----------------------------------------------------------------

    @contextmanager
    def _operation_scope(
        self,
        operation: Operation,
        request_id: int | None,
        actor: Actor | None,
        acting_as_role: Role | str | None,
    ) -> Generator[_OperationScope, None, None]:
        scope = _OperationScope(operation=operation, request_id=request_id)
        acting = acting_as_role.value if isinstance(acting_as_role, Role) else acting_as_role
        with LogContext.bind(
            request_id=request_id,
            actor_id=actor.id if actor else None,
            acting_role=acting,
            operation=operation.value,
        ):
            logger.info("request_transition_started")
            try:
                yield scope
            except (UnauthorizedError, ForbiddenError) as exc:
                logger.warning(
                    "request_transition_denied",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                raise
            except AftKernelError as exc:
                logger.warning(
                    "request_transition_failed",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                raise
            except StaleDataError as exc:
                observed = scope.observed_status.value if scope.observed_status else "unknown"
                logger.warning(
                    "request_transition_conflict",
                    extra={"observed_status": observed},
                )
                raise ConcurrentTransitionError(
                    operation.value, observed, request_id=scope.request_id,
                ) from exc
            except SQLAlchemyError as exc:
                logger.error("request_transition_persistence_error", exc_info=True)
                raise PersistenceError(operation.value, str(exc)) from exc
            logger.info("request_transition_completed")

    def _load_request(self, request_id: int, lock: bool = True) -> AftRequestModel | None:
        stmt = select(AftRequestModel).where(AftRequestModel.id == request_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _load(self, scope: _OperationScope, lock: bool = True) -> AftRequestModel:
        request = self._load_request(scope.request_id, lock=lock)
        if request is None:
            raise RequestNotFoundError(scope.request_id)
        scope.observed_status = request.status_enum
        return request

    def _authorize(
        self,
        operation: Operation,
        actor: Actor | None,
        request: AftRequestModel,
        acting_as_role: Role | str | None,
    ) -> AuthorizationDecision:
        return authorize(operation, actor, request.to_context(self._policy), acting_as_role)

    def _transition(self, request: AftRequestModel, new_status: RequestStatus) -> RequestStatus:
        old_status = request.set_status(new_status)
        if new_status != S.REJECTED:
            request.rejection_reason = None
        return old_status

    def _flush(self, request: AftRequestModel) -> None:
        request.updated_at = self.clock.now()
        self.session.flush()

    def _entry_absent(
        self,
        operation: Operation,
        request: AftRequestModel,
        transfer: TransferData,
        key: str,
    ) -> None:
        if transfer.has(key):
            raise AccumulatorEntryExistsError(
                operation.value, request.status, key, request_id=request.id,
            )

    # -----------------------------------------------------------------
    # Create / read / edit / delete
    # -----------------------------------------------------------------

    def create(
        self,
        actor: Actor | None,
        *,
        transfer_type: TransferType | str,
        classification: str,
        transfer_purpose: str,
        source_system: str,
        dest_system: str,
        details: Mapping[str, Any] | None = None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """Create a draft request owned by ``actor``."""
        with self._operation_scope(Operation.CREATE, None, actor, acting_as_role):
            decision = authorize(Operation.CREATE, actor, None, acting_as_role)

            fields = {
                "classification": classification,
                "transfer_purpose": transfer_purpose,
                "source_system": source_system,
                "dest_system": dest_system,
            }
            values = {name: _require_text(name, fields[name]) for name in _REQUIRED_TEXT_FIELDS}
            direction = _transfer_type(transfer_type)
            extra = _details(details)

            now = self.clock.now()
            request = AftRequestModel(
                request_number=self._allocate_request_number(now),
                transfer_type=direction.value,
                details=extra,
                requestor_id=actor.id,
                status=S.DRAFT.value,
                created_at=now,
                updated_at=now,
                **values,
            )
            self.session.add(request)
            self.session.flush()

            with LogContext.bind(request_id=request.id):
                self._auditor.record_transition(
                    request, AuditAction.CREATED, None, S.DRAFT, actor,
                    decision.acting_role,
                    notes=_note("created", actor, decision.acting_role),
                    payload={"transfer_type": direction.value},
                )
            return request.to_snapshot()

    def _allocate_request_number(self, now) -> str:
        for _ in range(REQUEST_NUMBER_ATTEMPTS):
            candidate = generate_request_number(now, self._rng)
            taken = self.session.execute(
                select(AftRequestModel.id).where(AftRequestModel.request_number == candidate)
            ).first()
            if taken is None:
                return candidate
            logger.warning("request_number_collision", extra={"request_number": candidate})
        raise PersistenceError("create", "could not allocate a unique request number")

    def get(
        self,
        request_id: int,
        actor: Actor | None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        with self._operation_scope(Operation.READ, request_id, actor, acting_as_role) as scope:
            request = self._load(scope, lock=False)
            self._authorize(Operation.READ, actor, request, acting_as_role)
            return request.to_snapshot()

    def edit(
        self,
        request_id: int,
        actor: Actor | None,
        updates: Mapping[str, Any],
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """
        Change form fields.  Never changes status.

        Raises:
            ValidationError: ``updates`` is empty, names ``status`` or an
                unknown field, or carries an invalid value.
        """
        with self._operation_scope(Operation.EDIT, request_id, actor, acting_as_role) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.EDIT, actor, request, acting_as_role)

            if not updates:
                raise ValidationError("updates", "no fields to update")
            if "status" in updates:
                raise ValidationError(
                    "status", "status can only change through a workflow operation",
                )
            for name in sorted(updates):
                if name not in EDITABLE_FIELDS:
                    raise ValidationError(name, "not an editable field")

            cleaned: dict[str, Any] = {}
            for name, value in updates.items():
                if name == "transfer_type":
                    cleaned[name] = _transfer_type(value).value
                elif name == "details":
                    cleaned[name] = _details(value)
                else:
                    cleaned[name] = _require_text(name, value)

            changed = sorted(
                name for name, value in cleaned.items() if getattr(request, name) != value
            )
            for name in changed:
                setattr(request, name, cleaned[name])
            self._flush(request)

            status = request.status_enum
            self._auditor.record_transition(
                request, AuditAction.UPDATED, status, status, actor,
                decision.acting_role,
                notes=_note("updated", actor, decision.acting_role),
                payload={"fields": changed},
            )
            return request.to_snapshot()

    def delete(
        self,
        request_id: int,
        actor: Actor | None,
        acting_as_role: Role | str | None = None,
    ) -> None:
        """Physically delete a draft.  Its audit history is kept."""
        with self._operation_scope(Operation.DELETE, request_id, actor, acting_as_role) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.DELETE, actor, request, acting_as_role)

            self._auditor.record_transition(
                request, AuditAction.DELETED, S.DRAFT, None, actor,
                decision.acting_role,
                notes=_note("deleted", actor, decision.acting_role),
                payload={"request_number": request.request_number},
            )
            self.session.delete(request)
            self.session.flush()

    # -----------------------------------------------------------------
    # Requestor path
    # -----------------------------------------------------------------

    def return_to_draft(
        self,
        request_id: int,
        actor: Actor | None,
        acting_as_role: Role | str | None = None,
        reason: str | None = None,
    ) -> RequestSnapshot:
        """Owner pulls the request back for editing; the open round is withdrawn."""
        with self._operation_scope(
            Operation.RETURN_TO_DRAFT, request_id, actor, acting_as_role,
        ) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.RETURN_TO_DRAFT, actor, request, acting_as_role)

            now = self.clock.now()
            approval = request.load_approval_data()
            current = approval.current_round
            if current is not None:
                approval = approval.with_current_round(
                    current.close(RoundOutcome.WITHDRAWN, now)
                )
                request.store_approval_data(approval)

            old_status = self._transition(request, S.DRAFT)
            self._flush(request)

            self._auditor.record_transition(
                request, AuditAction.UPDATED, old_status, S.DRAFT, actor,
                decision.acting_role,
                notes=_note("returned to draft", actor, decision.acting_role, reason),
                payload={"round": current.number if current else None},
            )
            return request.to_snapshot()

    def submit(
        self,
        request_id: int,
        actor: Actor | None,
        *,
        signature: str,
        terms_accepted: bool,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """
        Sign and submit a draft (or rejected) request.

        Opens a new approval round.  With ``dispatch_on_submit`` the
        request continues straight to its first approval stage.
        """
        with self._operation_scope(Operation.SUBMIT, request_id, actor, acting_as_role) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.SUBMIT, actor, request, acting_as_role)

            _require_text("signature", signature)
            if terms_accepted is not True:
                raise ValidationError("terms_accepted", "terms must be accepted to submit")

            now = self.clock.now()
            approval = request.load_approval_data()
            resubmission = (
                request.status_enum == S.REJECTED
                or approval.last_outcome == RoundOutcome.REJECTED
            )
            submission = _validated(
                "signature", SubmissionRecord,
                signer=actor.signer_as(decision.acting_role),
                signature=signature,
                terms_accepted=True,
                submitted_at=now,
            )
            direction = request.transfer_type_enum
            chain = self._policy.chain_for(direction)
            approval = approval.open_round(direction, chain, submission)
            request.store_approval_data(approval)

            old_status = self._transition(request, S.SUBMITTED)
            self._flush(request)

            action = AuditAction.RESUBMITTED if resubmission else AuditAction.SUBMITTED
            verb = "resubmitted" if resubmission else "submitted"
            round_number = approval.current_round.number
            self._auditor.record_transition(
                request, action, old_status, S.SUBMITTED, actor,
                decision.acting_role,
                notes=_note(verb, actor, decision.acting_role),
                payload={"round": round_number, "chain": [r.value for r in chain]},
            )
            if resubmission:
                self._security.record(
                    SecurityEventType.REQUEST_RESUBMITTED,
                    request.id,
                    actor,
                    decision.acting_role,
                    details={
                        "request_number": request.request_number,
                        "round": round_number,
                    },
                )

            if self._policy.dispatch_on_submit:
                self._route_to_first_stage(request, actor, decision.acting_role, chain)
            return request.to_snapshot()

    def _route_to_first_stage(
        self,
        request: AftRequestModel,
        actor: Actor,
        acting_role: Role,
        chain: tuple[Role, ...],
    ) -> None:
        target = first_stage_status(chain)
        old_status = self._transition(request, target)
        self._flush(request)
        self._auditor.record_transition(
            request, AuditAction.DISPATCHED, old_status, target, actor, acting_role,
            notes=f"Request routed to {chain[0].value} review",
            payload={"stage": chain[0].value},
        )

    def cancel(
        self,
        request_id: int,
        actor: Actor | None,
        reason: str | None = None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        with self._operation_scope(Operation.CANCEL, request_id, actor, acting_as_role) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.CANCEL, actor, request, acting_as_role)

            now = self.clock.now()
            approval = request.load_approval_data()
            current = approval.current_round
            if current is not None:
                request.store_approval_data(
                    approval.with_current_round(current.close(RoundOutcome.CANCELLED, now))
                )

            old_status = self._transition(request, S.CANCELLED)
            self._flush(request)

            self._auditor.record_transition(
                request, AuditAction.CANCELLED, old_status, S.CANCELLED, actor,
                decision.acting_role,
                notes=_note("cancelled", actor, decision.acting_role, reason),
                payload={"reason": reason},
            )
            return request.to_snapshot()

    # -----------------------------------------------------------------
    # Approval chain
    # -----------------------------------------------------------------

    def dispatch(
        self,
        request_id: int,
        actor: Actor | None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """Route a submitted request to its first approval stage."""
        with self._operation_scope(Operation.DISPATCH, request_id, actor, acting_as_role) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.DISPATCH, actor, request, acting_as_role)
            current = request.load_approval_data().current_round
            if current is None:
                raise InvalidStateError(
                    Operation.DISPATCH.value, request.status, request_id=request.id,
                    detail="no open approval round",
                )
            self._route_to_first_stage(request, actor, decision.acting_role, current.chain)
            return request.to_snapshot()

    def approve(
        self,
        request_id: int,
        actor: Actor | None,
        notes: str = "",
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """
        Sign the awaiting approval stage.

        The request moves to the next unsigned stage of the round's
        chain, or to ``approved`` when every stage has signed.
        """
        with self._operation_scope(Operation.APPROVE, request_id, actor, acting_as_role) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.APPROVE, actor, request, acting_as_role)

            if notes is not None and not isinstance(notes, str):
                raise ValidationError("notes", "must be a string")

            now = self.clock.now()
            approval = request.load_approval_data()
            current = approval.current_round
            if current is None:
                raise InvalidStateError(
                    Operation.APPROVE.value, request.status, request_id=request.id,
                    detail="no open approval round",
                )
            signature = StageSignature(
                stage=decision.stage,
                signer=actor.signer_as(decision.acting_role),
                signed_at=now,
                notes=notes or "",
            )
            try:
                current = current.with_signature(signature)
            except ValueError as exc:
                raise AccumulatorEntryExistsError(
                    Operation.APPROVE.value, request.status,
                    f"signatures.{decision.stage.value}", request_id=request.id,
                ) from exc

            new_status = next_approval_status(current.chain, current.signed_roles)
            if new_status == S.APPROVED:
                current = current.close(RoundOutcome.APPROVED, now)
            request.store_approval_data(approval.with_current_round(current))
            if decision.stage == Role.APPROVER:
                request.approver_id = actor.id

            old_status = self._transition(request, new_status)
            self._flush(request)

            self._auditor.record_transition(
                request, AuditAction.APPROVED, old_status, new_status, actor,
                decision.acting_role,
                notes=_note("approved", actor, decision.acting_role, notes or None),
                payload={"stage": decision.stage.value, "round": current.number},
            )
            return request.to_snapshot()

    def reject(
        self,
        request_id: int,
        actor: Actor | None,
        reason: str,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """Reject at the awaiting approval stage.  A reason is required."""
        with self._operation_scope(Operation.REJECT, request_id, actor, acting_as_role) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.REJECT, actor, request, acting_as_role)

            reason = _require_text("reason", reason)

            now = self.clock.now()
            approval = request.load_approval_data()
            current = approval.current_round
            if current is None:
                raise InvalidStateError(
                    Operation.REJECT.value, request.status, request_id=request.id,
                    detail="no open approval round",
                )
            rejection = RejectionRecord(
                stage=decision.stage,
                signer=actor.signer_as(decision.acting_role),
                reason=reason,
                rejected_at=now,
            )
            current = current.close(RoundOutcome.REJECTED, now, rejection)
            request.store_approval_data(approval.with_current_round(current))

            old_status = self._transition(request, S.REJECTED)
            request.rejection_reason = reason
            self._flush(request)

            self._auditor.record_transition(
                request, AuditAction.REJECTED, old_status, S.REJECTED, actor,
                decision.acting_role,
                notes=_note("rejected", actor, decision.acting_role, reason),
                payload={
                    "stage": decision.stage.value,
                    "round": current.number,
                    "reason": reason,
                },
            )
            self._security.record(
                SecurityEventType.REQUEST_REJECTED,
                request.id,
                actor,
                decision.acting_role,
                details={
                    "request_number": request.request_number,
                    "stage": decision.stage.value,
                    "reason": reason,
                },
            )
            return request.to_snapshot()

    # -----------------------------------------------------------------
    # Transfer execution
    # -----------------------------------------------------------------

    def assign_dta(
        self,
        request_id: int,
        actor: Actor | None,
        dta_id: UUID | None = None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """Take an approved request into the DTA queue.  Defaults to the actor."""
        with self._operation_scope(Operation.ASSIGN_DTA, request_id, actor, acting_as_role) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.ASSIGN_DTA, actor, request, acting_as_role)

            if dta_id is None:
                if not actor.holds(Role.DTA):
                    raise ValidationError("dta_id", "required when the actor is not a DTA")
                assignee = actor
            else:
                assignee = self._users.require_role_holder(dta_id, Role.DTA, "dta_id")

            request.dta_id = assignee.id
            old_status = self._transition(request, S.PENDING_DTA)
            self._flush(request)

            self._auditor.record_transition(
                request, AuditAction.DTA_ASSIGNED, old_status, S.PENDING_DTA, actor,
                decision.acting_role,
                notes=_note("assigned to DTA", actor, decision.acting_role, assignee.name),
                payload={"dta_id": str(assignee.id)},
            )
            return request.to_snapshot()

    def initiate_transfer(
        self,
        request_id: int,
        actor: Actor | None,
        notes: str | None = None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        with self._operation_scope(
            Operation.INITIATE_TRANSFER, request_id, actor, acting_as_role,
        ) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.INITIATE_TRANSFER, actor, request, acting_as_role)
            transfer = request.load_transfer_data()
            self._entry_absent(
                Operation.INITIATE_TRANSFER, request, transfer, TransferInitiation.KEY,
            )

            entry = _validated(
                "notes", TransferInitiation,
                initiated_by=actor.signer_as(decision.acting_role),
                initiated_at=self.clock.now(),
                notes=notes,
            )
            request.store_transfer_data(transfer.with_entry(entry))
            if request.dta_id is None:
                request.dta_id = actor.id
            old_status = self._transition(request, S.ACTIVE_TRANSFER)
            self._flush(request)

            self._auditor.record_transition(
                request, AuditAction.TRANSFER_INITIATED, old_status, S.ACTIVE_TRANSFER,
                actor, decision.acting_role,
                notes=_note("transfer initiated", actor, decision.acting_role, notes),
            )
            return request.to_snapshot()

    def complete_transfer(
        self,
        request_id: int,
        actor: Actor | None,
        *,
        signature: str,
        files_transferred: int,
        transfer_date: str,
        tpi_maintained: bool,
        completed_date: str | None = None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """
        Close an initiated transfer and hand the request to SME review.

        The SME and media custodian are not assigned here; whoever holds
        the role signs next.

        Raises:
            ValidationError: no signature, no files transferred, or
                two-person integrity not maintained.
        """
        with self._operation_scope(
            Operation.COMPLETE_TRANSFER, request_id, actor, acting_as_role,
        ) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.COMPLETE_TRANSFER, actor, request, acting_as_role)
            transfer = request.load_transfer_data()
            self._entry_absent(
                Operation.COMPLETE_TRANSFER, request, transfer, TransferCompletion.KEY,
            )

            _require_text("signature", signature)
            if isinstance(files_transferred, bool) or not isinstance(files_transferred, int):
                raise ValidationError("files_transferred", "must be an integer")
            if files_transferred < 1:
                raise ValidationError("files_transferred", "at least one file must be transferred")
            _require_text("transfer_date", transfer_date)
            if tpi_maintained is not True:
                raise ValidationError(
                    "tpi_maintained", "two-person integrity must be maintained",
                )

            entry = _validated(
                "transfer_completion", TransferCompletion,
                completed_by=actor.signer_as(decision.acting_role),
                completed_at=self.clock.now(),
                files_transferred=files_transferred,
                transfer_date=transfer_date,
                dta_signature=signature,
                tpi_maintained=True,
                completed_date=completed_date,
            )
            request.store_transfer_data(transfer.with_entry(entry))
            if request.dta_id is None:
                request.dta_id = actor.id
            old_status = self._transition(request, S.PENDING_SME)
            self._flush(request)

            self._auditor.record_transition(
                request, AuditAction.TRANSFER_COMPLETED, old_status, S.PENDING_SME,
                actor, decision.acting_role,
                notes=_note(
                    "transfer completed", actor, decision.acting_role,
                    f"{files_transferred} file(s)",
                ),
                payload={"files_transferred": files_transferred},
            )
            return request.to_snapshot()

    def record_antivirus_scan(
        self,
        request_id: int,
        actor: Actor | None,
        origination: ScanResult | Mapping[str, Any],
        destination: ScanResult | Mapping[str, Any],
        scan_date: str | None = None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """
        Record origination and destination scan results.

        No status gate; the record is write-once.  Status is unchanged.
        """
        with self._operation_scope(
            Operation.RECORD_ANTIVIRUS_SCAN, request_id, actor, acting_as_role,
        ) as scope:
            request = self._load(scope)
            decision = self._authorize(
                Operation.RECORD_ANTIVIRUS_SCAN, actor, request, acting_as_role,
            )
            transfer = request.load_transfer_data()
            self._entry_absent(
                Operation.RECORD_ANTIVIRUS_SCAN, request, transfer, AntivirusScan.KEY,
            )

            scan = _validated(
                "scan_date", AntivirusScan,
                origination=_scan_result("origination", origination),
                destination=_scan_result("destination", destination),
                recorded_by=actor.signer_as(decision.acting_role),
                recorded_at=self.clock.now(),
                scan_date=scan_date,
            )
            request.store_transfer_data(transfer.with_entry(scan))
            self._flush(request)

            status = request.status_enum
            self._auditor.record_transition(
                request, AuditAction.ANTIVIRUS_SCAN_RECORDED, status, status, actor,
                decision.acting_role,
                notes=_note("antivirus scan recorded", actor, decision.acting_role),
                payload={
                    "origination": scan.origination.to_wire(),
                    "destination": scan.destination.to_wire(),
                    "threats_found": scan.threats_found,
                },
            )
            return request.to_snapshot()

    def dta_sign(
        self,
        request_id: int,
        actor: Actor | None,
        *,
        signature: str,
        sme_id: UUID | None,
        media_custodian_id: UUID | None,
        acknowledge_terms: bool,
        transfer_notes: str | None = None,
        transfer_date: str | None = None,
        actual_start_date: str | None = None,
        actual_end_date: str | None = None,
        verification_results: str | None = None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """
        DTA sign-off.  Assigns the SME and media custodian.

        Raises:
            ValidationError: missing signature, terms not acknowledged, or
                an assignee without the required role.
            UserNotFoundError: an assignee id names no active user.
        """
        with self._operation_scope(Operation.DTA_SIGN, request_id, actor, acting_as_role) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.DTA_SIGN, actor, request, acting_as_role)
            transfer = request.load_transfer_data()
            self._entry_absent(Operation.DTA_SIGN, request, transfer, DtaSignature.KEY)

            _require_text("signature", signature)
            if acknowledge_terms is not True:
                raise ValidationError("acknowledge_terms", "transfer terms must be acknowledged")
            if sme_id is None:
                raise ValidationError("sme_id", "an SME must be assigned")
            if media_custodian_id is None:
                raise ValidationError("media_custodian_id", "a media custodian must be assigned")
            sme = self._users.require_role_holder(sme_id, Role.SME, "sme_id")
            custodian = self._users.require_role_holder(
                media_custodian_id, Role.MEDIA_CUSTODIAN, "media_custodian_id",
            )

            entry = _validated(
                "dta_signature", DtaSignature,
                signer=actor.signer_as(decision.acting_role),
                signature=signature,
                signed_at=self.clock.now(),
                assigned_sme_id=sme.id,
                assigned_media_custodian_id=custodian.id,
                terms_acknowledged=True,
                transfer_notes=transfer_notes,
                transfer_date=transfer_date,
                actual_start_date=actual_start_date,
                actual_end_date=actual_end_date,
                verification_results=verification_results,
            )
            request.store_transfer_data(transfer.with_entry(entry))
            request.sme_id = sme.id
            request.media_custodian_id = custodian.id
            if request.dta_id is None:
                request.dta_id = actor.id
            old_status = self._transition(request, S.PENDING_SME)
            self._flush(request)

            self._auditor.record_transition(
                request, AuditAction.DTA_SIGNED, old_status, S.PENDING_SME, actor,
                decision.acting_role,
                notes=_note("signed", actor, decision.acting_role, transfer_notes),
                payload={
                    "sme_id": str(sme.id),
                    "media_custodian_id": str(custodian.id),
                },
            )
            return request.to_snapshot()

    def sme_sign(
        self,
        request_id: int,
        actor: Actor | None,
        *,
        signature: str,
        comments: str | None = None,
        sme_date: str | None = None,
        technical_validation: TechnicalValidation | Mapping[str, Any] | None = None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        with self._operation_scope(Operation.SME_SIGN, request_id, actor, acting_as_role) as scope:
            request = self._load(scope)
            decision = self._authorize(Operation.SME_SIGN, actor, request, acting_as_role)
            transfer = request.load_transfer_data()
            self._entry_absent(Operation.SME_SIGN, request, transfer, SmeSignature.KEY)

            _require_text("signature", signature)
            entry = _validated(
                "sme_signature", SmeSignature,
                signer=actor.signer_as(decision.acting_role),
                signature=signature,
                signed_at=self.clock.now(),
                comments=comments,
                sme_date=sme_date,
                technical_validation=_technical_validation(technical_validation),
            )
            request.store_transfer_data(transfer.with_entry(entry))
            if request.sme_id is None:
                request.sme_id = actor.id
            old_status = self._transition(request, S.PENDING_MEDIA_CUSTODIAN)
            self._flush(request)

            self._auditor.record_transition(
                request, AuditAction.SME_SIGNED, old_status, S.PENDING_MEDIA_CUSTODIAN,
                actor, decision.acting_role,
                notes=_note("signed", actor, decision.acting_role, comments),
            )
            return request.to_snapshot()

    def media_custodian_disposition(
        self,
        request_id: int,
        actor: Actor | None,
        *,
        disposition_type: DispositionType | str,
        signature: str,
        disposition_method: str | None = None,
        disposition_notes: str | None = None,
        disposition_date: str | None = None,
        second_custodian_name: str | None = None,
        second_custodian_signature: str | None = None,
        acting_as_role: Role | str | None = None,
    ) -> RequestSnapshot:
        """
        Record final media disposition and close the workflow.

        Destruction requires a second custodian (two-person integrity)
        whose name differs from the signing custodian's.
        """
        with self._operation_scope(
            Operation.MEDIA_CUSTODIAN_DISPOSITION, request_id, actor, acting_as_role,
        ) as scope:
            request = self._load(scope)
            decision = self._authorize(
                Operation.MEDIA_CUSTODIAN_DISPOSITION, actor, request, acting_as_role,
            )
            transfer = request.load_transfer_data()
            self._entry_absent(
                Operation.MEDIA_CUSTODIAN_DISPOSITION, request, transfer,
                MediaCustodianSignature.KEY,
            )

            dtype = _validated("disposition_type", DispositionType, disposition_type)
            _require_text("signature", signature)
            now = self.clock.now()

            witness: WitnessSignature | None = None
            if dtype.requires_second_custodian or second_custodian_name:
                name = _require_text("second_custodian_name", second_custodian_name)
                _require_text("second_custodian_signature", second_custodian_signature)
                if name.casefold() == actor.name.strip().casefold():
                    raise ValidationError(
                        "second_custodian_name",
                        "the second custodian must be a different person",
                    )
                witness = _validated(
                    "second_custodian_signature", WitnessSignature,
                    name=name,
                    signature=second_custodian_signature,
                    signed_at=now,
                )

            entry = _validated(
                "media_custodian_signature", MediaCustodianSignature,
                signer=actor.signer_as(decision.acting_role),
                signature=signature,
                signed_at=now,
                disposition_type=dtype,
                disposition_method=disposition_method,
                disposition_notes=disposition_notes,
                disposition_date=disposition_date,
            )
            transfer = transfer.with_entry(entry)
            if witness is not None:
                transfer = transfer.with_entry(witness)
            transfer = transfer.with_entry(CompletionRecord(completed_at=now))
            request.store_transfer_data(transfer)
            if request.media_custodian_id is None:
                request.media_custodian_id = actor.id

            final_status = DISPOSITION_OUTCOMES[dtype]
            old_status = self._transition(request, final_status)
            self._flush(request)

            self._auditor.record_transition(
                request, AuditAction.DISPOSITION_RECORDED, old_status, final_status,
                actor, decision.acting_role,
                notes=_note(
                    f"media disposition ({dtype.value}) recorded", actor,
                    decision.acting_role, disposition_notes,
                ),
                payload={
                    "disposition_type": dtype.value,
                    "second_custodian": witness.name if witness else None,
                },
            )
            return request.to_snapshot()
