"""
Transfer execution tests: DTA assignment, initiation and completion,
antivirus scan, DTA and SME sign-off, and media disposition.
"""

from uuid import uuid4

import pytest

from aft_kernel.domain.accumulator import DispositionType
from aft_kernel.domain.statuses import RequestStatus
from aft_kernel.exceptions import (
    AccumulatorEntryExistsError,
    InvalidStateError,
    RoleNotHeldError,
    UserNotFoundError,
    ValidationError,
)

S = RequestStatus

SIGNATURE = "/s/ signed"
SCAN_CLEAN = {"performed": True, "filesScanned": 12, "threatsFound": 0}


def dta_sign(service, users, request_id, **overrides):
    kwargs = {
        "signature": SIGNATURE,
        "sme_id": users.sme.id,
        "media_custodian_id": users.media_custodian.id,
        "acknowledge_terms": True,
    }
    kwargs.update(overrides)
    return service.dta_sign(request_id, users.dta, **kwargs)


def complete_transfer(service, users, request_id, actor=None, **overrides):
    kwargs = {
        "signature": SIGNATURE,
        "files_transferred": 3,
        "transfer_date": "2025-01-06",
        "tpi_maintained": True,
    }
    kwargs.update(overrides)
    return service.complete_transfer(request_id, actor or users.dta, **kwargs)


def dispose(service, users, request_id, disposition_type, **overrides):
    kwargs = {"disposition_type": disposition_type, "signature": SIGNATURE}
    kwargs.update(overrides)
    return service.media_custodian_disposition(request_id, users.media_custodian, **kwargs)


class TestAssignDta:

    def test_dta_assigns_self(self, workflow, service, users):
        snap = workflow.to(S.APPROVED)
        snap = service.assign_dta(snap.id, users.dta)
        assert snap.dta_id == users.dta.id

    def test_admin_must_name_a_dta(self, workflow, service, users):
        snap = workflow.to(S.APPROVED)
        with pytest.raises(ValidationError) as exc_info:
            service.assign_dta(snap.id, users.admin)
        assert exc_info.value.field == "dta_id"

    def test_admin_assigns_named_dta(self, workflow, service, users, auditor):
        snap = workflow.to(S.APPROVED)
        snap = service.assign_dta(snap.id, users.admin, dta_id=users.dta.id)
        assert snap.status == S.PENDING_DTA
        assert snap.dta_id == users.dta.id
        entry = auditor.get_history(snap.id)[-1]
        assert entry.acting_role == "admin"
        assert entry.payload == {"dta_id": str(users.dta.id)}

    def test_assignee_must_hold_dta(self, workflow, service, users):
        snap = workflow.to(S.APPROVED)
        with pytest.raises(ValidationError):
            service.assign_dta(snap.id, users.dta, dta_id=users.sme.id)

    def test_unknown_assignee(self, workflow, service, users):
        snap = workflow.to(S.APPROVED)
        with pytest.raises(UserNotFoundError):
            service.assign_dta(snap.id, users.dta, dta_id=uuid4())

    def test_only_from_approved(self, workflow, service, users):
        snap = workflow.to(S.PENDING_CPSO)
        with pytest.raises(InvalidStateError) as exc_info:
            service.assign_dta(snap.id, users.dta)
        assert exc_info.value.current_status == "pending_cpso"


class TestInitiateTransfer:

    def test_initiate_twice(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(InvalidStateError):
            service.initiate_transfer(snap.id, users.dta)

    def test_requires_dta(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DTA)
        with pytest.raises(RoleNotHeldError):
            service.initiate_transfer(snap.id, users.sme)

    def test_records_initiator(self, workflow, service, users, clock):
        snap = workflow.to(S.PENDING_DTA)
        clock.advance(60)
        snap = service.initiate_transfer(snap.id, users.dta)
        initiation = snap.transfer_data.transfer_initiation
        assert initiation.initiated_by.id == users.dta.id
        assert initiation.initiated_at == clock.now()
        assert snap.updated_at == clock.now()


class TestDtaSign:

    def test_sme_required(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DTA)
        with pytest.raises(ValidationError) as exc_info:
            dta_sign(service, users, snap.id, sme_id=None)
        assert exc_info.value.field == "sme_id"

    def test_terms_required(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DTA)
        with pytest.raises(ValidationError) as exc_info:
            dta_sign(service, users, snap.id, acknowledge_terms=False)
        assert exc_info.value.field == "acknowledge_terms"

    def test_sme_must_hold_sme_role(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DTA)
        with pytest.raises(ValidationError) as exc_info:
            dta_sign(service, users, snap.id, sme_id=users.dta.id)
        assert exc_info.value.field == "sme_id"

    def test_custodian_must_hold_custodian_role(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DTA)
        with pytest.raises(ValidationError) as exc_info:
            dta_sign(service, users, snap.id, media_custodian_id=users.sme.id)
        assert exc_info.value.field == "media_custodian_id"

    def test_unknown_sme(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DTA)
        with pytest.raises(UserNotFoundError):
            dta_sign(service, users, snap.id, sme_id=uuid4())

    def test_deactivated_sme(self, workflow, service, users, user_service):
        snap = workflow.to(S.PENDING_DTA)
        user_service.deactivate(users.sme.id)
        with pytest.raises(UserNotFoundError):
            dta_sign(service, users, snap.id)

    def test_signature_details_kept(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DTA)
        snap = dta_sign(
            service, users, snap.id,
            transfer_notes="two discs", verification_results="hashes verified",
        )
        sig = snap.transfer_data.dta_signature
        assert sig.transfer_notes == "two discs"
        assert sig.verification_results == "hashes verified"
        assert sig.assigned_sme_id == users.sme.id

    def test_not_after_transfer_initiated(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(InvalidStateError) as exc_info:
            dta_sign(service, users, snap.id)
        assert exc_info.value.current_status == "active_transfer"
        assert service.get(snap.id, users.dta).transfer_data.dta_signature is None


class TestCompleteTransfer:

    def test_moves_to_sme_review(self, workflow, service, users, clock, auditor):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        clock.advance(600)
        snap = complete_transfer(service, users, snap.id, completed_date="2025-01-07")
        assert snap.status == S.PENDING_SME
        completion = snap.transfer_data.transfer_completion
        assert completion.completed_at == clock.now()
        assert completion.dta_signature == SIGNATURE
        assert completion.completed_date == "2025-01-07"
        assert completion.tpi_maintained is True
        assert snap.transfer_data.transfer_initiation.notes == "media mounted"
        entry = auditor.get_history(snap.id)[-1]
        assert entry.action == "TRANSFER_COMPLETED"
        assert entry.old_status == "active_transfer"
        assert entry.payload == {"files_transferred": 3}

    def test_any_sme_signs_next(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        snap = complete_transfer(service, users, snap.id)
        snap = service.sme_sign(snap.id, users.sme, signature=SIGNATURE)
        assert snap.status == S.PENDING_MEDIA_CUSTODIAN
        assert snap.sme_id == users.sme.id

    def test_only_from_active_transfer(self, workflow, service, users):
        snap = workflow.to(S.PENDING_DTA)
        with pytest.raises(InvalidStateError) as exc_info:
            complete_transfer(service, users, snap.id)
        assert exc_info.value.current_status == "pending_dta"

    def test_requires_dta(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(RoleNotHeldError):
            complete_transfer(service, users, snap.id, actor=users.sme)

    def test_admin_may_complete(self, workflow, service, users, auditor):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        snap = complete_transfer(service, users, snap.id, actor=users.admin)
        assert snap.status == S.PENDING_SME
        assert auditor.get_history(snap.id)[-1].acting_role == "admin"

    def test_tpi_must_be_maintained(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(ValidationError) as exc_info:
            complete_transfer(service, users, snap.id, tpi_maintained=False)
        assert exc_info.value.field == "tpi_maintained"
        assert service.get(snap.id, users.dta).status == S.ACTIVE_TRANSFER

    @pytest.mark.parametrize("count", [0, -1, True, "3"])
    def test_files_transferred_must_be_positive(self, workflow, service, users, count):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(ValidationError) as exc_info:
            complete_transfer(service, users, snap.id, files_transferred=count)
        assert exc_info.value.field == "files_transferred"

    def test_signature_required(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(ValidationError) as exc_info:
            complete_transfer(service, users, snap.id, signature=" ")
        assert exc_info.value.field == "signature"


class TestAntivirusScan:

    def test_write_once(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        service.record_antivirus_scan(snap.id, users.dta, SCAN_CLEAN, SCAN_CLEAN)
        with pytest.raises(AccumulatorEntryExistsError) as exc_info:
            service.record_antivirus_scan(snap.id, users.dta, SCAN_CLEAN, SCAN_CLEAN)
        assert exc_info.value.entry_key == "antivirusScan"
        assert exc_info.value.current_status == "active_transfer"

    def test_counts_without_scan_rejected(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(ValidationError) as exc_info:
            service.record_antivirus_scan(
                snap.id, users.dta,
                {"performed": False, "filesScanned": 3},
                SCAN_CLEAN,
            )
        assert exc_info.value.field == "origination"

    def test_scan_must_be_a_mapping(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(ValidationError) as exc_info:
            service.record_antivirus_scan(snap.id, users.dta, SCAN_CLEAN, "clean")
        assert exc_info.value.field == "destination"

    def test_unknown_scan_key(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(ValidationError):
            service.record_antivirus_scan(
                snap.id, users.dta, {"performed": True, "virusNames": []}, SCAN_CLEAN,
            )

    def test_no_status_gate(self, workflow, service, users, auditor):
        snap = workflow.to(S.COMPLETED)
        snap = service.record_antivirus_scan(
            snap.id, users.dta,
            SCAN_CLEAN,
            {"performed": True, "filesScanned": 12, "threatsFound": 1},
        )
        assert snap.status == S.COMPLETED
        assert snap.transfer_data.antivirus_scan.threats_found == 1
        entry = auditor.get_history(snap.id)[-1]
        assert entry.action == "ANTIVIRUS_SCAN_RECORDED"
        assert entry.old_status == entry.new_status == "completed"
        assert entry.payload["threats_found"] == 1

    def test_requires_dta(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(RoleNotHeldError):
            service.record_antivirus_scan(snap.id, users.sme, SCAN_CLEAN, SCAN_CLEAN)


class TestSmeSign:

    def test_signature_required(self, workflow, service, users):
        snap = workflow.to(S.PENDING_SME)
        with pytest.raises(ValidationError):
            service.sme_sign(snap.id, users.sme, signature="")

    def test_dta_cannot_sign_for_sme(self, workflow, service, users):
        snap = workflow.to(S.PENDING_SME)
        with pytest.raises(RoleNotHeldError):
            service.sme_sign(snap.id, users.dta, signature=SIGNATURE)

    def test_not_before_dta_sign(self, workflow, service, users):
        snap = workflow.to(S.ACTIVE_TRANSFER)
        with pytest.raises(InvalidStateError):
            service.sme_sign(snap.id, users.sme, signature=SIGNATURE)

    def test_technical_validation_must_be_a_mapping(self, workflow, service, users):
        snap = workflow.to(S.PENDING_SME)
        with pytest.raises(ValidationError) as exc_info:
            service.sme_sign(
                snap.id, users.sme, signature=SIGNATURE, technical_validation="looks fine",
            )
        assert exc_info.value.field == "technical_validation"


class TestDisposition:

    def test_destroy_requires_witness(self, workflow, service, users):
        snap = workflow.to(S.PENDING_MEDIA_CUSTODIAN)
        with pytest.raises(ValidationError) as exc_info:
            dispose(service, users, snap.id, "destroy")
        assert exc_info.value.field == "second_custodian_name"

    def test_witness_must_be_someone_else(self, workflow, service, users):
        snap = workflow.to(S.PENDING_MEDIA_CUSTODIAN)
        with pytest.raises(ValidationError) as exc_info:
            dispose(
                service, users, snap.id, "destroy",
                second_custodian_name="morgan custodian",
                second_custodian_signature="/s/ M",
            )
        assert exc_info.value.field == "second_custodian_name"

    def test_witness_signature_required(self, workflow, service, users):
        snap = workflow.to(S.PENDING_MEDIA_CUSTODIAN)
        with pytest.raises(ValidationError) as exc_info:
            dispose(
                service, users, snap.id, "destroy",
                second_custodian_name="Wes Witness",
            )
        assert exc_info.value.field == "second_custodian_signature"

    def test_sanitize_ends_disposed(self, workflow, service, users):
        snap = workflow.to(S.PENDING_MEDIA_CUSTODIAN)
        snap = dispose(service, users, snap.id, DispositionType.SANITIZE)
        assert snap.status == S.DISPOSED
        assert snap.transfer_data.second_media_custodian_signature is None

    def test_archive_ends_completed(self, workflow, service, users, clock):
        snap = workflow.to(S.PENDING_MEDIA_CUSTODIAN)
        snap = dispose(service, users, snap.id, "archive", disposition_notes="vault 3")
        assert snap.status == S.COMPLETED
        assert snap.transfer_data.completed_at.completed_at == clock.now()
        assert snap.transfer_data.media_custodian_signature.disposition_notes == "vault 3"

    def test_optional_witness_recorded_on_return(self, workflow, service, users, auditor):
        snap = workflow.to(S.PENDING_MEDIA_CUSTODIAN)
        snap = dispose(
            service, users, snap.id, "return",
            second_custodian_name="Wes Witness",
            second_custodian_signature="/s/ W. Witness",
        )
        assert snap.status == S.COMPLETED
        assert snap.transfer_data.second_media_custodian_signature.name == "Wes Witness"
        assert auditor.get_history(snap.id)[-1].payload == {
            "disposition_type": "return",
            "second_custodian": "Wes Witness",
        }

    def test_unknown_disposition_type(self, workflow, service, users):
        snap = workflow.to(S.PENDING_MEDIA_CUSTODIAN)
        with pytest.raises(ValidationError) as exc_info:
            dispose(service, users, snap.id, "shred")
        assert exc_info.value.field == "disposition_type"

    def test_finished_request_cannot_be_disposed_again(self, workflow, service, users):
        snap = workflow.to(S.COMPLETED)
        with pytest.raises(InvalidStateError):
            dispose(service, users, snap.id, "archive")

    def test_requires_custodian(self, workflow, service, users):
        snap = workflow.to(S.PENDING_MEDIA_CUSTODIAN)
        with pytest.raises(RoleNotHeldError):
            service.media_custodian_disposition(
                snap.id, users.sme, disposition_type="archive", signature=SIGNATURE,
            )
