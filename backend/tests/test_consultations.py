import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import make_clinician, make_consultation, make_patient
from core.errors import InvalidStateError, UnauthorizedError, ValidationError
from models import AuditEvent, Consultation
from models.consultation import CONSULTATION_CANCELLED, CONSULTATION_DRAFT, CONSULTATION_FINALIZED
from schemas.consultation import ConsultationUpdate
from services import consultation_service

CRM = "CRM-SP 123456"


@pytest.fixture
def care_team(db):
    doctor = make_clinician(db, crm=CRM)
    patient = make_patient(db, doctor)
    return doctor, patient


def test_anamnesis_length_boundary(db, care_team):
    doctor, patient = care_team
    short = make_consultation(db, doctor, patient, anamnesis="x" * 9)
    exact = make_consultation(db, doctor, patient, anamnesis="x" * 10)

    with pytest.raises(ValidationError) as exc:
        consultation_service.finalize_consultation(db, short.id, doctor.id, CRM)
    assert exc.value.details["missing_fields"] == ["anamnesis"]

    done = consultation_service.finalize_consultation(db, exact.id, doctor.id, CRM)
    assert done.status == CONSULTATION_FINALIZED


def test_all_problems_reported_at_once(db, care_team):
    doctor, patient = care_team
    c = make_consultation(
        db, doctor, patient, anamnesis="", treatment_plan="  ", codes=("F32.1", "f32", "F3", "Z00.123", "F32.1\n", " F32")
    )

    with pytest.raises(ValidationError) as exc:
        consultation_service.finalize_consultation(db, c.id, doctor.id, CRM)

    details = exc.value.details
    assert details["missing_fields"] == ["anamnesis", "treatment_plan"]
    assert details["invalid_codes"] == ["f32", "F3", "Z00.123", "F32.1\n", " F32"]
    assert details["codes_required"] is False
    db.expire_all()
    assert db.get(Consultation, c.id).status == CONSULTATION_DRAFT


def test_diagnosis_code_is_required(db, care_team):
    doctor, patient = care_team
    c = make_consultation(db, doctor, patient, codes=())
    with pytest.raises(ValidationError) as exc:
        consultation_service.finalize_consultation(db, c.id, doctor.id, CRM)
    assert exc.value.details["codes_required"] is True


def test_missing_credential_blocks_signing(db, care_team):
    doctor, patient = care_team
    c = make_consultation(db, doctor, patient)
    with pytest.raises(ValidationError):
        consultation_service.finalize_consultation(db, c.id, doctor.id, "  ")


def test_signature_is_reproducible_and_tamper_evident(db, care_team):
    doctor, patient = care_team
    c = make_consultation(db, doctor, patient)
    done = consultation_service.finalize_consultation(db, c.id, doctor.id, CRM)

    assert len(done.signature_hash) == 64
    assert done.signed_credential == CRM
    assert consultation_service.verify_signature(done) is True
    assert done.signature_hash == consultation_service.compute_signature(done, done.signed_at, CRM)

    done.treatment_plan = "Something else entirely."
    assert consultation_service.verify_signature(done) is False
    db.rollback()


def test_anamnesis_is_not_part_of_the_signature(db, care_team):
    doctor, patient = care_team
    c = make_consultation(db, doctor, patient)
    done = consultation_service.finalize_consultation(db, c.id, doctor.id, CRM)
    done.anamnesis = "Rewritten history text."
    assert consultation_service.verify_signature(done) is True
    db.rollback()


def test_finalized_consultation_is_immutable(db, care_team):
    doctor, patient = care_team
    c = make_consultation(db, doctor, patient)
    consultation_service.finalize_consultation(db, c.id, doctor.id, CRM)

    with pytest.raises(InvalidStateError):
        consultation_service.update_consultation(db, c.id, doctor.id, ConsultationUpdate(treatment_plan="New plan"))
    with pytest.raises(InvalidStateError):
        consultation_service.finalize_consultation(db, c.id, doctor.id, CRM)
    with pytest.raises(InvalidStateError):
        consultation_service.cancel_consultation(db, c.id, doctor.id, "Paciente desistiu do atendimento")


def test_draft_can_be_edited(db, care_team):
    doctor, patient = care_team
    c = make_consultation(db, doctor, patient, codes=("F32",))
    updated = consultation_service.update_consultation(
        db, c.id, doctor.id, ConsultationUpdate(icd10_codes=["F41.1"], treatment_plan="Psicoterapia semanal")
    )
    assert consultation_service.diagnosis_codes(updated) == ["F41.1"]
    assert updated.treatment_plan == "Psicoterapia semanal"


def test_cancel_requires_reason(db, care_team):
    doctor, patient = care_team
    c = make_consultation(db, doctor, patient)

    with pytest.raises(ValidationError):
        consultation_service.cancel_consultation(db, c.id, doctor.id, "too short")

    cancelled = consultation_service.cancel_consultation(db, c.id, doctor.id, "Paciente não compareceu")
    assert cancelled.status == CONSULTATION_CANCELLED
    assert cancelled.cancelled_at is not None
    assert cancelled.cancelled_reason == "Paciente não compareceu"

    with pytest.raises(InvalidStateError):
        consultation_service.cancel_consultation(db, c.id, doctor.id, "Paciente não compareceu")
    with pytest.raises(InvalidStateError):
        consultation_service.finalize_consultation(db, c.id, doctor.id, CRM)


def test_only_the_attending_clinician_can_act(db, care_team):
    doctor, patient = care_team
    outsider = make_clinician(db, email="other@test.example.com", crm="CRM-RJ 999")
    c = make_consultation(db, doctor, patient)

    with pytest.raises(UnauthorizedError):
        consultation_service.finalize_consultation(db, c.id, outsider.id, "CRM-RJ 999")
    with pytest.raises(UnauthorizedError):
        consultation_service.get_consultation(db, c.id, outsider.id)


def test_finalize_is_audited(db, care_team):
    doctor, patient = care_team
    c = make_consultation(db, doctor, patient)
    done = consultation_service.finalize_consultation(db, c.id, doctor.id, CRM)
    evt = db.query(AuditEvent).filter(AuditEvent.event_type == "consultation_finalized").one()
    assert evt.target_id == c.id
    assert done.signature_hash in evt.meta_json


def test_code_with_trailing_newline_is_not_signed(db, care_team):
    doctor, patient = care_team
    c = make_consultation(db, doctor, patient, codes=("F32.1\n",))
    with pytest.raises(ValidationError) as exc:
        consultation_service.finalize_consultation(db, c.id, doctor.id, CRM)
    assert exc.value.details["invalid_codes"] == ["F32.1\n"]
    db.expire_all()
    assert db.get(Consultation, c.id).status == CONSULTATION_DRAFT


@pytest.mark.parametrize("field", ["date_time", "duration_minutes", "modality"])
def test_required_fields_cannot_be_cleared(db, care_team, field):
    doctor, patient = care_team
    c = make_consultation(db, doctor, patient)

    with pytest.raises(ValidationError) as exc:
        consultation_service.update_consultation(db, c.id, doctor.id, ConsultationUpdate.model_validate({field: None}))

    assert exc.value.details["missing_fields"] == [field]
    db.expire_all()
    assert getattr(db.get(Consultation, c.id), field) is not None


def test_anamnesis_length_is_measured_after_stripping():
    with pytest.raises(PydanticValidationError):
        ConsultationUpdate(anamnesis=" " + "x" * 9)
    assert ConsultationUpdate(anamnesis="  " + "x" * 10 + " ").anamnesis == "x" * 10
