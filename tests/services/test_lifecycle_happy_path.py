"""
End-to-end lifecycle tests.

Drives requests from draft to a finished status through every role and
checks the snapshot, the accumulators and the audit trail at the end.
"""

import pytest

from aft_kernel.domain.accumulator import DispositionType, RoundOutcome
from aft_kernel.domain.request_number import REQUEST_NUMBER_PATTERN
from aft_kernel.domain.statuses import RequestStatus, Role, TransferType
from aft_kernel.exceptions import RoleNotHeldError

S = RequestStatus

SIGNATURE = "/s/ signed"
SCAN_CLEAN = {"performed": True, "filesScanned": 12, "threatsFound": 0}


class TestHighToLow:
    """high-to-low: dao -> approver -> cpso, then transfer and disposition."""

    def test_full_lifecycle(self, service, workflow, users, auditor, clock):
        snap = workflow.create(TransferType.HIGH_TO_LOW)
        assert snap.status == S.DRAFT
        assert REQUEST_NUMBER_PATTERN.match(snap.request_number)
        assert snap.requestor_id == users.requestor.id
        assert snap.details == {"file_count": 12, "media_type": "DVD-R"}

        snap = workflow.submit(snap.id)
        assert snap.status == S.PENDING_DAO
        current = snap.approval_data.current_round
        assert current.number == 1
        assert current.chain == (Role.DAO, Role.APPROVER, Role.CPSO)
        assert current.submission.signer.id == users.requestor.id
        assert current.submission.submitted_at == clock.now()

        snap = service.approve(snap.id, users.dao, notes="mission need confirmed")
        assert snap.status == S.PENDING_APPROVER
        snap = service.approve(snap.id, users.approver)
        assert snap.status == S.PENDING_CPSO
        assert snap.approver_id == users.approver.id
        snap = service.approve(snap.id, users.cpso)
        assert snap.status == S.APPROVED

        rnd = snap.approval_data.rounds[0]
        assert rnd.outcome == RoundOutcome.APPROVED
        assert rnd.signature_for(Role.DAO).notes == "mission need confirmed"
        assert rnd.signature_for(Role.CPSO).signer.id == users.cpso.id
        assert snap.approval_data.current_round is None

        snap = service.assign_dta(snap.id, users.dta)
        assert snap.status == S.PENDING_DTA
        assert snap.dta_id == users.dta.id

        snap = service.initiate_transfer(snap.id, users.dta, notes="media mounted")
        assert snap.status == S.ACTIVE_TRANSFER
        assert snap.transfer_data.transfer_initiation.notes == "media mounted"

        snap = service.record_antivirus_scan(snap.id, users.dta, SCAN_CLEAN, SCAN_CLEAN)
        assert snap.status == S.ACTIVE_TRANSFER
        assert snap.transfer_data.antivirus_scan.origination.files_scanned == 12

        snap = service.complete_transfer(
            snap.id, users.dta,
            signature=SIGNATURE,
            files_transferred=12,
            transfer_date="2025-01-06",
            tpi_maintained=True,
        )
        assert snap.status == S.PENDING_SME
        completion = snap.transfer_data.transfer_completion
        assert completion.files_transferred == 12
        assert completion.completed_by.id == users.dta.id
        assert snap.transfer_data.transfer_initiation is not None
        assert snap.sme_id is None

        snap = service.sme_sign(
            snap.id, users.sme,
            signature=SIGNATURE,
            technical_validation={"integrityCheck": "hashes match"},
        )
        assert snap.status == S.PENDING_MEDIA_CUSTODIAN
        assert snap.sme_id == users.sme.id
        assert snap.transfer_data.sme_signature.technical_validation.integrity_check == (
            "hashes match"
        )

        snap = service.media_custodian_disposition(
            snap.id, users.media_custodian,
            disposition_type=DispositionType.RETURN,
            signature=SIGNATURE,
            disposition_method="hand carry",
        )
        assert snap.status == S.COMPLETED
        assert snap.transfer_data.completed_at.completed_at == clock.now()
        assert snap.transfer_data.media_custodian_signature.disposition_method == "hand carry"

        actions = [entry.action for entry in auditor.get_history(snap.id)]
        assert actions == [
            "CREATED",
            "SUBMITTED",
            "DISPATCHED",
            "APPROVED",
            "APPROVED",
            "APPROVED",
            "DTA_ASSIGNED",
            "TRANSFER_INITIATED",
            "ANTIVIRUS_SCAN_RECORDED",
            "TRANSFER_COMPLETED",
            "SME_SIGNED",
            "DISPOSITION_RECORDED",
        ]
        assert auditor.validate_chain()
        assert auditor.replay_status(snap.id) == S.COMPLETED

    def test_destroy_ends_disposed(self, workflow, auditor):
        snap = workflow.to(S.DISPOSED)
        assert snap.status == S.DISPOSED
        witness = snap.transfer_data.second_media_custodian_signature
        assert witness.name == "Wes Witness"
        assert witness.role == "media_custodian_witness"
        assert auditor.replay_status(snap.id) == S.DISPOSED


class TestLowToHigh:
    """low-to-high skips the DAO stage."""

    def test_routes_to_approver(self, workflow, service, users):
        snap = workflow.submit(workflow.create(TransferType.LOW_TO_HIGH).id)
        assert snap.status == S.PENDING_APPROVER

        snap = service.approve(snap.id, users.approver)
        assert snap.status == S.PENDING_CPSO
        snap = service.approve(snap.id, users.cpso)
        assert snap.status == S.APPROVED
        assert snap.approval_data.rounds[0].signature_for(Role.DAO) is None

    def test_dao_cannot_approve(self, workflow, service, users):
        snap = workflow.submit(workflow.create(TransferType.LOW_TO_HIGH).id)
        with pytest.raises(RoleNotHeldError) as exc_info:
            service.approve(snap.id, users.dao)
        assert exc_info.value.required_roles == ("approver",)

    def test_skip_initiation_straight_to_dta_sign(self, workflow, users):
        snap = workflow.to(S.PENDING_DTA, TransferType.LOW_TO_HIGH)
        snap = workflow.dta_sign(snap.id)
        assert snap.status == S.PENDING_SME
        assert snap.transfer_data.transfer_initiation is None


class TestAuditNotes:

    def test_notes_name_actor_and_role(self, workflow, service, users, auditor):
        snap = workflow.to(S.PENDING_DAO)
        service.reject(snap.id, users.dao, reason="missing scan plan")
        history = auditor.get_history(snap.id)
        assert history[-1].notes == "Request rejected by Dana Owner (dao): missing scan plan"
        assert history[-1].acting_role == "dao"
        assert history[2].notes == "Request routed to dao review"

    def test_every_operation_has_one_entry(self, workflow, service, users, auditor):
        snap = workflow.create()
        before = len(auditor.get_history(snap.id))
        service.edit(snap.id, users.requestor, {"transfer_purpose": "Updated purpose"})
        assert len(auditor.get_history(snap.id)) == before + 1
