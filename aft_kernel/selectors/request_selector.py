"""
Module: aft_kernel.selectors.request_selector
Responsibility: Read-side queries over requests and their history:
    dashboards (visible requests, pending actions, status counts) and the
    ordered audit trail of a single request.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Visibility is decided by the same authorize(READ) call the
      lifecycle service uses, so a list never shows a request that
      ``get`` would refuse.
    - Pending actions are computed from the authorization table, not
      from a separate per-role status list.

Failure modes:
    - UnauthorizedError when no actor is given.
    - RequestNotFoundError from ``history`` for an id with no audit
      entries; ForbiddenError when the actor may not read the request.
    - CorruptAccumulatorError propagates for a request whose persisted
      accumulator is unreadable; it is never silently skipped.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from sqlalchemy import select

from aft_kernel.domain.authorization import (
    ACTIONABLE_OPERATIONS,
    Operation,
    allowed_operations,
    authorize,
    effective_roles,
)
from aft_kernel.domain.dtos import Actor, AuditEntryRecord, RequestSnapshot
from aft_kernel.domain.policy import DEFAULT_WORKFLOW_POLICY, WorkflowPolicy
from aft_kernel.domain.statuses import STATUS_PROGRESS_ORDER, RequestStatus, Role
from aft_kernel.exceptions import ForbiddenError, RequestNotFoundError, UnauthorizedError
from aft_kernel.models.audit_log import AuditLogEntry
from aft_kernel.models.request import AftRequestModel
from aft_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PendingAction:
    """A request waiting on the actor, with what they can do to it."""

    request: RequestSnapshot
    operations: tuple[Operation, ...]


class RequestSelector(BaseSelector[AftRequestModel]):
    """Queries over AFT requests, filtered by what the actor may see."""

    def __init__(self, session, policy: WorkflowPolicy | None = None):
        super().__init__(session)
        self._policy = policy or DEFAULT_WORKFLOW_POLICY

    def _candidates(self, status: RequestStatus | None = None) -> list[AftRequestModel]:
        stmt = select(AftRequestModel).order_by(AftRequestModel.id)
        if status is not None:
            stmt = stmt.where(AftRequestModel.status == RequestStatus(status).value)
        return list(self.session.execute(stmt).scalars().all())

    def _visible(
        self,
        actor: Actor | None,
        acting_as_role: Role | str | None,
        status: RequestStatus | None = None,
    ) -> list[AftRequestModel]:
        if actor is None:
            raise UnauthorizedError(Operation.READ.value)
        effective_roles(actor, acting_as_role, Operation.READ)
        visible = []
        for request in self._candidates(status):
            try:
                authorize(
                    Operation.READ, actor, request.to_context(self._policy), acting_as_role,
                )
            except ForbiddenError:
                continue
            visible.append(request)
        return visible

    def list_visible(
        self,
        actor: Actor | None,
        acting_as_role: Role | str | None = None,
        status: RequestStatus | str | None = None,
    ) -> list[RequestSnapshot]:
        """Requests the actor may read, oldest first, optionally one status only."""
        return [r.to_snapshot() for r in self._visible(actor, acting_as_role, status)]

    def list_pending_actions(
        self,
        actor: Actor | None,
        acting_as_role: Role | str | None = None,
    ) -> list[PendingAction]:
        """
        Requests the actor can move forward right now.

        A requestor's own drafts count (submit); an approver's stage
        queue counts (approve); a DTA's approved queue counts
        (assign_dta); and so on down the workflow.
        """
        pending = []
        for request in self._visible(actor, acting_as_role):
            operations = allowed_operations(
                actor,
                request.to_context(self._policy),
                acting_as_role,
                ACTIONABLE_OPERATIONS,
            )
            if operations:
                pending.append(PendingAction(request.to_snapshot(), operations))
        return pending

    def status_counts(
        self,
        actor: Actor | None,
        acting_as_role: Role | str | None = None,
    ) -> dict[RequestStatus, int]:
        """Visible request counts per status, in progress-bar order."""
        counts = Counter(r.status_enum for r in self._visible(actor, acting_as_role))
        ordered = {status: counts[status] for status in STATUS_PROGRESS_ORDER if counts[status]}
        for status, count in counts.items():
            ordered.setdefault(status, count)
        return ordered

    def history(
        self,
        request_id: int,
        actor: Actor | None,
        acting_as_role: Role | str | None = None,
    ) -> tuple[AuditEntryRecord, ...]:
        """
        The request's audit trail in ``seq`` order.  Survives draft deletion.

        Access follows ``authorize(READ)`` on the live request.  Once a
        draft is deleted only an admin or the requestor who created it may
        read what is left.
        """
        entries = self.session.execute(
            select(AuditLogEntry)
            .where(AuditLogEntry.request_id == request_id)
            .order_by(AuditLogEntry.seq)
        ).scalars().all()
        if not entries:
            raise RequestNotFoundError(request_id)
        if actor is None:
            raise UnauthorizedError(Operation.READ.value)

        request = self.session.get(AftRequestModel, request_id)
        if request is not None:
            authorize(Operation.READ, actor, request.to_context(self._policy), acting_as_role)
        else:
            roles = effective_roles(actor, acting_as_role, Operation.READ)
            if Role.ADMIN not in roles and entries[0].actor_id != actor.id:
                raise ForbiddenError(
                    Operation.READ.value, "deleted request history is owner or admin only",
                    request_id=request_id, actor_id=str(actor.id),
                )
        return tuple(entry.to_record() for entry in entries)
