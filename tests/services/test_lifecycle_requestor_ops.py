"""
Requestor-side operations: create, read, edit, delete, submit,
return to draft and cancel.
"""

from datetime import timedelta

import pytest

from aft_kernel.domain.accumulator import RoundOutcome
from aft_kernel.domain.statuses import RequestStatus, Role, TransferType
from aft_kernel.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotRequestOwnerError,
    RequestNotFoundError,
    RoleNotHeldError,
    UnauthorizedError,
    ValidationError,
)

S = RequestStatus


class TestCreate:

    def test_dta_may_create(self, workflow, users):
        snap = workflow.create(actor=users.dta)
        assert snap.status == S.DRAFT
        assert snap.requestor_id == users.dta.id

    def test_approver_may_not_create(self, workflow, users):
        with pytest.raises(RoleNotHeldError):
            workflow.create(actor=users.approver)

    def test_unknown_transfer_type(self, workflow):
        with pytest.raises(ValidationError) as exc_info:
            workflow.create(transfer_type="sideways")
        assert exc_info.value.field == "transfer_type"

    def test_blank_required_field(self, workflow):
        with pytest.raises(ValidationError) as exc_info:
            workflow.create(source_system="  ")
        assert exc_info.value.field == "source_system"

    def test_no_actor(self, service):
        with pytest.raises(UnauthorizedError):
            service.create(
                None,
                transfer_type="low-to-low",
                classification="U",
                transfer_purpose="p",
                source_system="a",
                dest_system="b",
            )

    def test_request_numbers_are_unique(self, workflow):
        numbers = {workflow.create().request_number for _ in range(5)}
        assert len(numbers) == 5


class TestRead:

    def test_owner_reads(self, workflow, service, users):
        snap = workflow.create()
        assert service.get(snap.id, users.requestor).id == snap.id

    def test_other_requestor_forbidden(self, workflow, service, users):
        snap = workflow.create()
        with pytest.raises(ForbiddenError):
            service.get(snap.id, users.other_requestor)

    def test_missing_request(self, service, users):
        with pytest.raises(RequestNotFoundError):
            service.get(9999, users.admin)

    def test_not_found_precedes_unauthorized(self, service):
        with pytest.raises(RequestNotFoundError):
            service.get(9999, None)

    def test_unauthorized_on_existing_request(self, workflow, service):
        snap = workflow.create()
        with pytest.raises(UnauthorizedError):
            service.get(snap.id, None)

    def test_reloaded_snapshot_timestamps_are_utc(self, workflow, service, users, session):
        before = workflow.to(S.PENDING_DAO)
        session.expunge_all()
        after = service.get(before.id, users.requestor)
        assert after.created_at == before.created_at
        assert after.updated_at == before.updated_at
        assert after.created_at.utcoffset() == timedelta(0)

    @pytest.mark.parametrize("status", [S.PENDING_MEDIA_CUSTODIAN, S.COMPLETED, S.DISPOSED])
    def test_unassigned_sme_reads_later_stages(self, workflow, service, user_service, status):
        snap = workflow.to(status)
        other_sme = user_service.create_user(
            "sky.sme@example.mil", "Sky", "Second", Role.SME,
        )
        assert service.get(snap.id, other_sme).status == status

    @pytest.mark.parametrize("status", [S.COMPLETED, S.DISPOSED])
    def test_unassigned_custodian_reads_finished_request(
        self, workflow, service, user_service, status,
    ):
        snap = workflow.to(status)
        other_custodian = user_service.create_user(
            "casey.vault@example.mil", "Casey", "Vault", Role.MEDIA_CUSTODIAN,
        )
        assert service.get(snap.id, other_custodian).status == status

    def test_custodian_cannot_read_before_its_stage(self, workflow, service, user_service):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        other_custodian = user_service.create_user(
            "casey.vault@example.mil", "Casey", "Vault", Role.MEDIA_CUSTODIAN,
        )
        with pytest.raises(ForbiddenError):
            service.get(snap.id, other_custodian)


class TestEdit:

    def test_owner_edits_draft(self, workflow, service, users, auditor):
        snap = workflow.create()
        edited = service.edit(
            snap.id, users.requestor,
            {"transfer_purpose": "Revised purpose", "dest_system": "LOW-SIDE-09"},
        )
        assert edited.transfer_purpose == "Revised purpose"
        assert edited.status == S.DRAFT
        entry = auditor.get_history(snap.id)[-1]
        assert entry.action == "UPDATED"
        assert entry.payload == {"fields": ["dest_system", "transfer_purpose"]}
        assert entry.old_status == entry.new_status == "draft"

    def test_status_is_not_editable(self, workflow, service, users):
        snap = workflow.create()
        with pytest.raises(ValidationError) as exc_info:
            service.edit(snap.id, users.requestor, {"status": "approved"})
        assert exc_info.value.field == "status"
        assert service.get(snap.id, users.requestor).status == S.DRAFT

    def test_empty_update(self, workflow, service, users):
        snap = workflow.create()
        with pytest.raises(ValidationError):
            service.edit(snap.id, users.requestor, {})

    def test_unknown_field(self, workflow, service, users):
        snap = workflow.create()
        with pytest.raises(ValidationError) as exc_info:
            service.edit(snap.id, users.requestor, {"request_number": "AFT-1-AAAA"})
        assert exc_info.value.field == "request_number"

    def test_submitted_request_is_locked(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DAO)
        with pytest.raises(ForbiddenError):
            service.edit(snap.id, users.requestor, {"transfer_purpose": "late change"})

    def test_admin_edits_any_status(self, workflow, service, users):
        snap = workflow.to(S.PENDING_CPSO)
        edited = service.edit(snap.id, users.admin, {"classification": "TOP SECRET"})
        assert edited.classification == "TOP SECRET"
        assert edited.status == S.PENDING_CPSO

    def test_non_owner(self, workflow, service, users):
        snap = workflow.create()
        with pytest.raises(NotRequestOwnerError):
            service.edit(snap.id, users.other_requestor, {"transfer_purpose": "mine now"})

    def test_changed_direction_changes_routing(self, workflow, service, users):
        snap = workflow.create(TransferType.HIGH_TO_LOW)
        service.edit(snap.id, users.requestor, {"transfer_type": "low-to-high"})
        snap = workflow.submit(snap.id)
        assert snap.status == S.PENDING_APPROVER


class TestDelete:

    def test_delete_draft_keeps_history(self, workflow, service, users, auditor):
        snap = workflow.create()
        service.delete(snap.id, users.requestor)

        with pytest.raises(RequestNotFoundError):
            service.get(snap.id, users.requestor)
        history = auditor.get_history(snap.id)
        assert [e.action for e in history] == ["CREATED", "DELETED"]
        assert history[-1].new_status is None
        assert history[-1].payload == {"request_number": snap.request_number}
        assert auditor.replay_status(snap.id) is None
        assert auditor.validate_chain()

    def test_submitted_request_cannot_be_deleted(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DAO)
        with pytest.raises(ForbiddenError):
            service.delete(snap.id, users.requestor)

    def test_non_owner_cannot_delete(self, workflow, service, users):
        snap = workflow.create()
        with pytest.raises(NotRequestOwnerError):
            service.delete(snap.id, users.other_requestor)


class TestSubmit:

    def test_terms_must_be_accepted(self, workflow, service, users):
        snap = workflow.create()
        with pytest.raises(ValidationError) as exc_info:
            service.submit(snap.id, users.requestor, signature="/s/ R", terms_accepted=False)
        assert exc_info.value.field == "terms_accepted"

    def test_signature_required(self, workflow, service, users):
        snap = workflow.create()
        with pytest.raises(ValidationError):
            service.submit(snap.id, users.requestor, signature="", terms_accepted=True)

    def test_submit_twice(self, workflow, users):
        snap = workflow.to(S.PENDING_DAO)
        with pytest.raises(InvalidStateError) as exc_info:
            workflow.submit(snap.id)
        assert exc_info.value.current_status == "pending_dao"

    def test_manual_dispatch_stops_at_submitted(
        self, manual_dispatch_service, users, auditor,
    ):
        snap = manual_dispatch_service.create(
            users.requestor,
            transfer_type="high-to-low",
            classification="SECRET",
            transfer_purpose="Patch",
            source_system="H1",
            dest_system="L1",
        )
        snap = manual_dispatch_service.submit(
            snap.id, users.requestor, signature="/s/ R", terms_accepted=True,
        )
        assert snap.status == S.SUBMITTED
        assert [e.action for e in auditor.get_history(snap.id)] == ["CREATED", "SUBMITTED"]

        with pytest.raises(RoleNotHeldError):
            manual_dispatch_service.dispatch(snap.id, users.approver)
        snap = manual_dispatch_service.dispatch(snap.id, users.dao)
        assert snap.status == S.PENDING_DAO

    def test_stage_may_approve_straight_from_submitted(self, manual_dispatch_service, users):
        snap = manual_dispatch_service.create(
            users.requestor,
            transfer_type="low-to-low",
            classification="UNCLASSIFIED",
            transfer_purpose="Docs",
            source_system="L1",
            dest_system="L2",
        )
        manual_dispatch_service.submit(
            snap.id, users.requestor, signature="/s/ R", terms_accepted=True,
        )
        snap = manual_dispatch_service.approve(snap.id, users.approver)
        assert snap.status == S.PENDING_CPSO


class TestReturnToDraft:

    def test_withdraws_open_round(self, workflow, service, users, auditor):
        snap = workflow.to(S.PENDING_APPROVER)
        snap = service.return_to_draft(snap.id, users.requestor, reason="wrong media")
        assert snap.status == S.DRAFT
        assert snap.approval_data.rounds[0].outcome == RoundOutcome.WITHDRAWN
        entry = auditor.get_history(snap.id)[-1]
        assert entry.action == "UPDATED"
        assert entry.old_status == "pending_approver"
        assert entry.new_status == "draft"
        assert "wrong media" in entry.notes

    def test_resubmit_after_withdrawal_is_a_new_round(self, workflow, service, users, auditor):
        snap = workflow.to(S.PENDING_DAO)
        service.return_to_draft(snap.id, users.requestor)
        snap = workflow.submit(snap.id)
        assert [r.number for r in snap.approval_data.rounds] == [1, 2]
        assert snap.approval_data.current_round.number == 2
        assert auditor.get_history(snap.id)[-2].action == "SUBMITTED"

    def test_draft_cannot_return_to_draft(self, workflow, service, users):
        snap = workflow.create()
        with pytest.raises(InvalidStateError):
            service.return_to_draft(snap.id, users.requestor)

    def test_admin_cannot_pull_back(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DAO)
        with pytest.raises(RoleNotHeldError):
            service.return_to_draft(snap.id, users.admin)


class TestCancel:

    def test_cancel_draft(self, workflow, service, users):
        snap = workflow.to(S.CANCELLED)
        assert snap.status == S.CANCELLED
        assert snap.approval_data.rounds == ()

    def test_cancel_closes_open_round(self, workflow, service, users):
        snap = workflow.to(S.PENDING_CPSO)
        snap = service.cancel(snap.id, users.requestor, reason="mission cancelled")
        assert snap.status == S.CANCELLED
        assert snap.approval_data.rounds[0].outcome == RoundOutcome.CANCELLED

    def test_requestor_cannot_cancel_approved(self, workflow, service, users):
        snap = workflow.to(S.APPROVED)
        with pytest.raises(InvalidStateError) as exc_info:
            service.cancel(snap.id, users.requestor)
        assert exc_info.value.current_status == "approved"

    def test_admin_cancels_pending_dta(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DTA)
        assert service.cancel(snap.id, users.admin).status == S.CANCELLED

    def test_cancelled_is_final(self, workflow, service, users):
        snap = workflow.to(S.CANCELLED)
        with pytest.raises(InvalidStateError):
            workflow.submit(snap.id)
        with pytest.raises(InvalidStateError):
            service.cancel(snap.id, users.admin)
