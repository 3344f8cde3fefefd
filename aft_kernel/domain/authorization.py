"""
Transition authorizer (``aft_kernel.domain.authorization``).

Responsibility
--------------
One table maps every request operation to the statuses it accepts, the
roles that may perform it, and its ownership rule.  ``authorize`` is the
only place role, ownership and status preconditions are evaluated; every
service operation calls it before touching the request.

Architecture position
---------------------
**Kernel domain layer** -- pure.  Takes an ``Actor`` and a
``RequestContext`` built by the caller; performs no I/O.

Invariants enforced
-------------------
* Check order: Unauthorized, then Forbidden (acting role, role
  membership, ownership, visibility, approval stage), then InvalidState.
  NotFound is the caller's load step and precedes all of these;
  ValidationError is the caller's input step and follows them.
* ``acting_as_role`` narrows the actor to that single role.  Without it
  the union of the actor's roles applies.
* Admin bypasses role membership and ownership where the rule allows it,
  never the status gate (except the wider admin status sets for edit and
  cancel).
* An approval stage that already signed in the current round cannot sign
  again: a repeat approval is InvalidState, not a second signature.

Failure modes
-------------
* ``UnauthorizedError`` -- no actor.
* ``ForbiddenError`` (``RoleNotHeldError``, ``NotRequestOwnerError``) --
  authenticated but not permitted.
* ``InvalidStateError`` -- status not accepted; message echoes the status.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from aft_kernel.domain.dtos import Actor
from aft_kernel.domain.statuses import (
    APPROVAL_ROLES,
    APPROVAL_STATUSES,
    SME_PENDING_STATUSES,
    STAGE_STATUS_BY_ROLE,
    RequestStatus,
    Role,
    TransferType,
    acting_stage,
    routed_role,
)
from aft_kernel.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotRequestOwnerError,
    RoleNotHeldError,
    UnauthorizedError,
)

S = RequestStatus


class Operation(str, Enum):
    """Every operation the lifecycle engine exposes."""

    CREATE = "create"
    READ = "read"
    EDIT = "edit"
    RETURN_TO_DRAFT = "return_to_draft"
    SUBMIT = "submit"
    DISPATCH = "dispatch"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    ASSIGN_DTA = "assign_dta"
    INITIATE_TRANSFER = "initiate_transfer"
    COMPLETE_TRANSFER = "complete_transfer"
    RECORD_ANTIVIRUS_SCAN = "record_antivirus_scan"
    DTA_SIGN = "dta_sign"
    SME_SIGN = "sme_sign"
    MEDIA_CUSTODIAN_DISPOSITION = "media_custodian_disposition"
    DELETE = "delete"


class Ownership(str, Enum):
    """Whether the actor must be the request's requestor."""

    ANY = "any"
    OWNER = "owner"


class StatusFailure(str, Enum):
    """How a rejected status precondition is reported."""

    INVALID_STATE = "invalid_state"
    FORBIDDEN = "forbidden"


ALL_STATUSES: frozenset[RequestStatus] = frozenset(RequestStatus)

_PRE_APPROVAL: frozenset[RequestStatus] = frozenset({S.DRAFT}) | APPROVAL_STATUSES

_DTA_VISIBLE: frozenset[RequestStatus] = frozenset({
    S.APPROVED,
    S.PENDING_DTA,
    S.ACTIVE_TRANSFER,
    S.PENDING_SME_SIGNATURE,
    S.PENDING_SME,
    S.PENDING_MEDIA_CUSTODIAN,
    S.COMPLETED,
    S.DISPOSED,
})

_SME_VISIBLE: frozenset[RequestStatus] = frozenset({
    S.PENDING_SME_SIGNATURE,
    S.PENDING_SME,
    S.PENDING_MEDIA_CUSTODIAN,
    S.COMPLETED,
    S.DISPOSED,
})

_CUSTODIAN_VISIBLE: frozenset[RequestStatus] = frozenset({
    S.PENDING_MEDIA_CUSTODIAN,
    S.COMPLETED,
    S.DISPOSED,
})

_WORKFLOW_ROLES: frozenset[Role] = frozenset(APPROVAL_ROLES) | {
    Role.DTA,
    Role.SME,
    Role.MEDIA_CUSTODIAN,
}


@dataclass(frozen=True)
class TransitionRule:
    """
    Authorization rule for one operation.

    ``accepted_statuses`` of ``None`` means no status gate.
    ``admin_statuses`` of ``None`` means admin is held to
    ``accepted_statuses`` like everyone else.
    """

    operation: Operation
    allowed_roles: frozenset[Role]
    accepted_statuses: frozenset[RequestStatus] | None
    ownership: Ownership = Ownership.ANY
    admin_bypass: bool = True
    admin_statuses: frozenset[RequestStatus] | None = None
    status_failure: StatusFailure = StatusFailure.INVALID_STATE


def _rule(operation: Operation, roles: set[Role], statuses, **kwargs) -> TransitionRule:
    return TransitionRule(
        operation=operation,
        allowed_roles=frozenset(roles),
        accepted_statuses=frozenset(statuses) if statuses is not None else None,
        **kwargs,
    )


AUTHORIZATION_TABLE: dict[Operation, TransitionRule] = {
    Operation.CREATE: _rule(
        Operation.CREATE, {Role.REQUESTOR, Role.DTA}, None,
    ),
    Operation.READ: _rule(
        Operation.READ, set(Role), None,
    ),
    Operation.EDIT: _rule(
        Operation.EDIT, {Role.REQUESTOR}, {S.DRAFT, S.REJECTED},
        ownership=Ownership.OWNER,
        admin_statuses=ALL_STATUSES,
        status_failure=StatusFailure.FORBIDDEN,
    ),
    Operation.RETURN_TO_DRAFT: _rule(
        Operation.RETURN_TO_DRAFT, {Role.REQUESTOR},
        APPROVAL_STATUSES | {S.REJECTED},
        ownership=Ownership.OWNER,
        admin_bypass=False,
    ),
    Operation.SUBMIT: _rule(
        Operation.SUBMIT, {Role.REQUESTOR}, {S.DRAFT, S.REJECTED},
        ownership=Ownership.OWNER,
    ),
    Operation.DISPATCH: _rule(
        Operation.DISPATCH, set(APPROVAL_ROLES), {S.SUBMITTED},
    ),
    Operation.APPROVE: _rule(
        Operation.APPROVE, set(APPROVAL_ROLES), APPROVAL_STATUSES,
    ),
    Operation.REJECT: _rule(
        Operation.REJECT, set(APPROVAL_ROLES), APPROVAL_STATUSES,
    ),
    Operation.CANCEL: _rule(
        Operation.CANCEL, {Role.REQUESTOR}, _PRE_APPROVAL,
        ownership=Ownership.OWNER,
        admin_statuses=_PRE_APPROVAL | {S.APPROVED, S.PENDING_DTA},
    ),
    Operation.ASSIGN_DTA: _rule(
        Operation.ASSIGN_DTA, {Role.DTA}, {S.APPROVED},
    ),
    Operation.INITIATE_TRANSFER: _rule(
        Operation.INITIATE_TRANSFER, {Role.DTA}, {S.PENDING_DTA},
    ),
    Operation.COMPLETE_TRANSFER: _rule(
        Operation.COMPLETE_TRANSFER, {Role.DTA}, {S.ACTIVE_TRANSFER},
    ),
    Operation.RECORD_ANTIVIRUS_SCAN: _rule(
        Operation.RECORD_ANTIVIRUS_SCAN, {Role.DTA}, None,
    ),
    Operation.DTA_SIGN: _rule(
        Operation.DTA_SIGN, {Role.DTA}, {S.PENDING_DTA},
    ),
    Operation.SME_SIGN: _rule(
        Operation.SME_SIGN, {Role.SME}, SME_PENDING_STATUSES,
    ),
    Operation.MEDIA_CUSTODIAN_DISPOSITION: _rule(
        Operation.MEDIA_CUSTODIAN_DISPOSITION, {Role.MEDIA_CUSTODIAN},
        {S.PENDING_MEDIA_CUSTODIAN},
    ),
    Operation.DELETE: _rule(
        Operation.DELETE, {Role.REQUESTOR}, {S.DRAFT},
        ownership=Ownership.OWNER,
        status_failure=StatusFailure.FORBIDDEN,
    ),
}

# Operations that move a request forward and therefore show up as
# "waiting on you" in dashboards.
ACTIONABLE_OPERATIONS: tuple[Operation, ...] = (
    Operation.SUBMIT,
    Operation.DISPATCH,
    Operation.APPROVE,
    Operation.ASSIGN_DTA,
    Operation.INITIATE_TRANSFER,
    Operation.COMPLETE_TRANSFER,
    Operation.DTA_SIGN,
    Operation.SME_SIGN,
    Operation.MEDIA_CUSTODIAN_DISPOSITION,
)


@dataclass(frozen=True)
class RequestContext:
    """
    The facts about a request that authorization depends on.

    ``approval_chain`` is the open round's chain, or the policy chain for
    the request's direction when no round is open.  ``signed_roles`` and
    ``round_signer_ids`` describe the open round only;
    ``participant_ids`` spans every round and transfer record.
    """

    request_id: int
    requestor_id: UUID
    status: RequestStatus
    transfer_type: TransferType
    approval_chain: tuple[Role, ...]
    signed_roles: frozenset[Role] = frozenset()
    round_signer_ids: frozenset[UUID] = frozenset()
    participant_ids: frozenset[UUID] = frozenset()
    dta_id: UUID | None = None
    sme_id: UUID | None = None
    media_custodian_id: UUID | None = None


@dataclass(frozen=True)
class AuthorizationDecision:
    """
    Outcome of a successful check.

    ``acting_role`` is the role recorded against the actor in audit notes
    and signer blocks.  ``stage`` is the approval stage being signed for
    approve/reject/dispatch.
    """

    operation: Operation
    acting_role: Role
    is_admin: bool
    stage: Role | None = None


def effective_roles(
    actor: Actor,
    acting_as_role: Role | str | None,
    operation: Operation,
) -> frozenset[Role]:
    """Roles considered for this call.  Raises if the acting role is not held."""
    if acting_as_role is None:
        return actor.roles
    try:
        role = Role(acting_as_role)
    except ValueError:
        raise ForbiddenError(
            operation.value, f"unknown acting role '{acting_as_role}'",
            actor_id=str(actor.id),
        ) from None
    if role not in actor.roles:
        raise RoleNotHeldError(operation.value, (role.value,), actor_id=str(actor.id))
    return frozenset({role})


def _pick_acting_role(
    roles: frozenset[Role],
    rule: TransitionRule,
    is_admin: bool,
    preferred: Role | None = None,
) -> Role:
    if preferred is not None and preferred in roles:
        return preferred
    for role in Role:
        if role in rule.allowed_roles and role in roles:
            return role
    return Role.ADMIN


def _can_read(actor: Actor, roles: frozenset[Role], ctx: RequestContext) -> bool:
    if ctx.requestor_id == actor.id or Role.ADMIN in roles:
        return True
    if actor.id in ctx.participant_ids and roles & _WORKFLOW_ROLES:
        return True
    for role in roles & set(APPROVAL_ROLES):
        if ctx.status == STAGE_STATUS_BY_ROLE[role] and role in ctx.approval_chain:
            return True
        if ctx.status == S.SUBMITTED and routed_role(ctx.approval_chain) == role:
            return True
    if Role.DTA in roles and (ctx.status in _DTA_VISIBLE or ctx.dta_id == actor.id):
        return True
    if Role.SME in roles and (ctx.status in _SME_VISIBLE or ctx.sme_id == actor.id):
        return True
    if Role.MEDIA_CUSTODIAN in roles and (
        ctx.status in _CUSTODIAN_VISIBLE or ctx.media_custodian_id == actor.id
    ):
        return True
    return False


def _stage_for(operation: Operation, ctx: RequestContext) -> Role | None:
    if operation == Operation.DISPATCH:
        return routed_role(ctx.approval_chain) if ctx.status == S.SUBMITTED else None
    if ctx.status not in APPROVAL_STATUSES:
        return None
    return acting_stage(ctx.status, ctx.approval_chain, ctx.signed_roles)


def authorize(
    operation: Operation,
    actor: Actor | None,
    ctx: RequestContext | None = None,
    acting_as_role: Role | str | None = None,
) -> AuthorizationDecision:
    """
    Check ``actor`` may perform ``operation`` on the request in ``ctx``.

    ``ctx`` is ``None`` only for CREATE.

    Returns:
        AuthorizationDecision with the role the actor acts in.

    Raises:
        UnauthorizedError, ForbiddenError, InvalidStateError.
    """
    rule = AUTHORIZATION_TABLE[operation]
    if actor is None:
        raise UnauthorizedError(operation.value)

    request_id = ctx.request_id if ctx is not None else None
    actor_id = str(actor.id)
    roles = effective_roles(actor, acting_as_role, operation)
    is_admin = rule.admin_bypass and Role.ADMIN in roles

    if not is_admin and not (roles & rule.allowed_roles):
        raise RoleNotHeldError(
            operation.value,
            tuple(sorted(r.value for r in rule.allowed_roles)),
            request_id=request_id,
            actor_id=actor_id,
        )

    if ctx is None:
        return AuthorizationDecision(
            operation=operation,
            acting_role=_pick_acting_role(roles, rule, is_admin),
            is_admin=is_admin,
        )

    if rule.ownership == Ownership.OWNER and not is_admin and ctx.requestor_id != actor.id:
        raise NotRequestOwnerError(operation.value, request_id=request_id, actor_id=actor_id)

    if operation == Operation.READ and not _can_read(actor, roles, ctx):
        raise ForbiddenError(
            operation.value,
            "request is not visible to the actor's roles",
            request_id=request_id,
            actor_id=actor_id,
        )

    stage: Role | None = None
    already_signed = False
    if operation in (Operation.APPROVE, Operation.REJECT, Operation.DISPATCH):
        stage = _stage_for(operation, ctx)
        if stage is not None and not is_admin and stage not in roles:
            already_signed = actor.id in ctx.round_signer_ids
            if not already_signed:
                raise RoleNotHeldError(
                    operation.value, (stage.value,),
                    request_id=request_id, actor_id=actor_id,
                )

    statuses = rule.admin_statuses if (is_admin and rule.admin_statuses) else rule.accepted_statuses
    if statuses is not None and ctx.status not in statuses:
        if rule.status_failure == StatusFailure.FORBIDDEN:
            raise ForbiddenError(
                operation.value,
                f"not permitted while status is '{ctx.status.value}'",
                request_id=request_id,
                actor_id=actor_id,
            )
        raise InvalidStateError(operation.value, ctx.status.value, request_id=request_id)

    if operation in (Operation.APPROVE, Operation.REJECT, Operation.DISPATCH):
        if stage is None:
            raise InvalidStateError(
                operation.value, ctx.status.value, request_id=request_id,
                detail="no approval stage is awaiting action",
            )
        if already_signed:
            raise InvalidStateError(
                operation.value, ctx.status.value, request_id=request_id,
                detail="actor has already signed this approval round",
            )

    if operation in (Operation.APPROVE, Operation.REJECT, Operation.DISPATCH):
        acting_role = stage if stage in roles else Role.ADMIN
    else:
        acting_role = _pick_acting_role(roles, rule, is_admin)

    return AuthorizationDecision(
        operation=operation,
        acting_role=acting_role,
        is_admin=is_admin,
        stage=stage,
    )


def allowed_operations(
    actor: Actor,
    ctx: RequestContext,
    acting_as_role: Role | str | None = None,
    operations: tuple[Operation, ...] = ACTIONABLE_OPERATIONS,
) -> tuple[Operation, ...]:
    """Operations from ``operations`` the actor may perform right now."""
    permitted = []
    for operation in operations:
        try:
            authorize(operation, actor, ctx, acting_as_role)
        except (ForbiddenError, InvalidStateError):
            continue
        permitted.append(operation)
    return tuple(permitted)
