"""
Request status model (``aft_kernel.domain.statuses``).

Responsibility
--------------
Enumerates request statuses, roles and transfer directions, and defines
the only legal status transitions.  Also resolves which approval stage a
request is routed to, given its direction's approval chain.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  May import only
from ``aft_kernel.exceptions``.

Invariants enforced
-------------------
* ``REQUEST_TRANSITIONS`` is the whole graph.  Every status write calls
  ``ensure_transition``; an edge outside the table raises
  ``IllegalTransitionError``.
* ``completed``, ``disposed`` and ``cancelled`` have no outgoing edges.
  ``rejected`` is terminal for the workflow but keeps the edges of the
  edit/resubmit path (``draft``, ``submitted``).
* ``pending_sme_signature`` is accepted as a current status but no edge
  leads into it; ``pending_sme`` is the status written.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from aft_kernel.exceptions import IllegalTransitionError


class RequestStatus(str, Enum):
    """Request lifecycle states.  Values are persisted verbatim."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING_DAO = "pending_dao"
    PENDING_APPROVER = "pending_approver"
    PENDING_CPSO = "pending_cpso"
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING_DTA = "pending_dta"
    ACTIVE_TRANSFER = "active_transfer"
    PENDING_SME_SIGNATURE = "pending_sme_signature"
    PENDING_SME = "pending_sme"
    PENDING_MEDIA_CUSTODIAN = "pending_media_custodian"
    COMPLETED = "completed"
    DISPOSED = "disposed"
    CANCELLED = "cancelled"


class Role(str, Enum):
    """User roles.  Values are persisted verbatim."""

    ADMIN = "admin"
    REQUESTOR = "requestor"
    DAO = "dao"
    APPROVER = "approver"
    CPSO = "cpso"
    DTA = "dta"
    SME = "sme"
    MEDIA_CUSTODIAN = "media_custodian"


class TransferType(str, Enum):
    """Transfer direction between classification domains."""

    LOW_TO_LOW = "low-to-low"
    LOW_TO_HIGH = "low-to-high"
    HIGH_TO_LOW = "high-to-low"
    HIGH_TO_HIGH = "high-to-high"


S = RequestStatus

# =========================================================================
# Transition graph
# =========================================================================

REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    S.DRAFT: frozenset({S.SUBMITTED, S.CANCELLED}),
    S.SUBMITTED: frozenset({
        S.PENDING_DAO,
        S.PENDING_APPROVER,
        S.PENDING_CPSO,
        S.APPROVED,
        S.REJECTED,
        S.DRAFT,
        S.CANCELLED,
    }),
    S.PENDING_DAO: frozenset({
        S.PENDING_APPROVER,
        S.PENDING_CPSO,
        S.APPROVED,
        S.REJECTED,
        S.DRAFT,
        S.CANCELLED,
    }),
    S.PENDING_APPROVER: frozenset({
        S.PENDING_CPSO,
        S.APPROVED,
        S.REJECTED,
        S.DRAFT,
        S.CANCELLED,
    }),
    S.PENDING_CPSO: frozenset({S.APPROVED, S.REJECTED, S.DRAFT, S.CANCELLED}),
    S.APPROVED: frozenset({S.PENDING_DTA, S.CANCELLED}),
    S.REJECTED: frozenset({S.DRAFT, S.SUBMITTED}),
    S.PENDING_DTA: frozenset({S.ACTIVE_TRANSFER, S.PENDING_SME, S.CANCELLED}),
    S.ACTIVE_TRANSFER: frozenset({S.PENDING_SME}),
    S.PENDING_SME_SIGNATURE: frozenset({S.PENDING_MEDIA_CUSTODIAN}),
    S.PENDING_SME: frozenset({S.PENDING_MEDIA_CUSTODIAN}),
    S.PENDING_MEDIA_CUSTODIAN: frozenset({S.DISPOSED, S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.DISPOSED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    S.COMPLETED,
    S.DISPOSED,
    S.REJECTED,
    S.CANCELLED,
})

APPROVAL_STAGE_STATUSES: frozenset[RequestStatus] = frozenset({
    S.PENDING_DAO,
    S.PENDING_APPROVER,
    S.PENDING_CPSO,
})

# Statuses from which the approval chain can still act.
APPROVAL_STATUSES: frozenset[RequestStatus] = APPROVAL_STAGE_STATUSES | {S.SUBMITTED}

SME_PENDING_STATUSES: frozenset[RequestStatus] = frozenset({
    S.PENDING_SME,
    S.PENDING_SME_SIGNATURE,
})

# Progress-bar ordering.  Not a lifecycle order: rejected/cancelled branch.
STATUS_PROGRESS_ORDER: tuple[RequestStatus, ...] = (
    S.DRAFT,
    S.SUBMITTED,
    S.PENDING_DAO,
    S.PENDING_APPROVER,
    S.PENDING_CPSO,
    S.APPROVED,
    S.PENDING_DTA,
    S.ACTIVE_TRANSFER,
    S.PENDING_SME_SIGNATURE,
    S.PENDING_SME,
    S.PENDING_MEDIA_CUSTODIAN,
    S.COMPLETED,
    S.DISPOSED,
)

# =========================================================================
# Approval chain routing
# =========================================================================

APPROVAL_ROLES: tuple[Role, ...] = (Role.DAO, Role.APPROVER, Role.CPSO)

STAGE_STATUS_BY_ROLE: dict[Role, RequestStatus] = {
    Role.DAO: S.PENDING_DAO,
    Role.APPROVER: S.PENDING_APPROVER,
    Role.CPSO: S.PENDING_CPSO,
}

STAGE_ROLE_BY_STATUS: dict[RequestStatus, Role] = {
    status: role for role, status in STAGE_STATUS_BY_ROLE.items()
}

DEFAULT_APPROVAL_CHAINS: dict[TransferType, tuple[Role, ...]] = {
    TransferType.HIGH_TO_LOW: (Role.DAO, Role.APPROVER, Role.CPSO),
    TransferType.LOW_TO_HIGH: (Role.APPROVER, Role.CPSO),
    TransferType.LOW_TO_LOW: (Role.APPROVER, Role.CPSO),
    TransferType.HIGH_TO_HIGH: (Role.APPROVER, Role.CPSO),
}


def is_valid_transition(from_status: RequestStatus, to_status: RequestStatus) -> bool:
    """True if ``to_status`` is reachable from ``from_status`` in one step."""
    return to_status in REQUEST_TRANSITIONS.get(from_status, frozenset())


def ensure_transition(
    from_status: RequestStatus,
    to_status: RequestStatus,
    request_id: int | None = None,
) -> None:
    """Raise IllegalTransitionError unless the edge exists."""
    if not is_valid_transition(from_status, to_status):
        raise IllegalTransitionError(
            from_status.value, to_status.value, request_id=request_id,
        )


def routed_role(chain: tuple[Role, ...]) -> Role:
    """Role that receives a freshly submitted request (first in chain)."""
    return chain[0]


def first_stage_status(chain: tuple[Role, ...]) -> RequestStatus:
    """Pending status a submitted request is dispatched to."""
    return STAGE_STATUS_BY_ROLE[routed_role(chain)]


def next_approval_status(
    chain: tuple[Role, ...],
    signed_roles: Iterable[Role],
) -> RequestStatus:
    """
    Status after a stage signature.

    The first chain role without a signature in the current round, or
    ``approved`` when every role has signed.
    """
    signed = set(signed_roles)
    for role in chain:
        if role not in signed:
            return STAGE_STATUS_BY_ROLE[role]
    return S.APPROVED


def acting_stage(
    status: RequestStatus,
    chain: tuple[Role, ...],
    signed_roles: Iterable[Role],
) -> Role | None:
    """
    The approval stage that may act on a request at ``status``.

    At ``submitted`` this is the routed role.  At a pending stage it is the
    stage's role, provided it belongs to the chain and has not yet signed.
    """
    signed = set(signed_roles)
    if status == S.SUBMITTED:
        role = routed_role(chain)
        return role if role not in signed else None
    role = STAGE_ROLE_BY_STATUS.get(status)
    if role is None or role not in chain or role in signed:
        return None
    return role
