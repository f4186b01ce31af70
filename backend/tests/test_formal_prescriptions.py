import json
from datetime import timedelta
from types import SimpleNamespace

import pytest

from conftest import make_clinician, make_consultation, make_medication, make_patient
from core.config import settings
from core.errors import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from models import ActivePrescription, AuditEvent, FormalPrescription
from schemas.prescription import FormalPrescriptionCreate
from services import consultation_service, prescription_service

CRM = "CRM-SP 123456"


@pytest.fixture
def setting(db):
    doctor = make_clinician(db, crm=CRM)
    patient = make_patient(db, doctor)
    consultation = make_consultation(db, doctor, patient, codes=("F32.1", "Z00"))
    consultation_service.finalize_consultation(db, consultation.id, doctor.id, CRM)
    return SimpleNamespace(doctor=doctor, patient=patient, consultation=consultation)


def rx_payload(setting, meds, rx_type="SIMPLES", **item_fields):
    return FormalPrescriptionCreate(
        consultation_id=setting.consultation.id,
        patient_id=setting.patient.id,
        type=rx_type,
        items=[
            {"medication_id": m.id, "dosage": "50mg", "quantity": "30 comprimidos", **item_fields} for m in meds
        ],
    )


def test_indicated_medication_is_prescribed_and_signed(db, setting):
    sertraline = make_medication(db, "Sertralina", ["F32.1"], tags=["ssri"])

    p = prescription_service.create_formal_prescription(db, rx_payload(setting, [sertraline]), setting.doctor)

    assert p.type == "SIMPLES"
    assert p.is_valid is True
    assert p.valid_until - p.created_at == timedelta(days=30)
    assert p.signed_credential == CRM
    assert prescription_service.verify_signature(p) is True
    assert [i.medication_id for i in p.items] == [sertraline.id]

    [active] = prescription_service.active_medications(db, setting.patient.id)
    assert active.medication_id == sertraline.id
    assert active.source_prescription_id == p.id
    assert active.frequency == settings.default_prescription_frequency
    assert active.end_date == p.valid_until


def test_unindicated_medication_blocks_the_whole_prescription(db, setting):
    sertraline = make_medication(db, "Sertralina", ["F32.1"])
    salbutamol = make_medication(db, "Salbutamol", ["J45"])

    with pytest.raises(ValidationError) as exc:
        prescription_service.create_formal_prescription(
            db, rx_payload(setting, [sertraline, salbutamol]), setting.doctor
        )

    assert 'Medication "Salbutamol" is not indicated for the diagnosed conditions' in exc.value.message
    assert "J45" in exc.value.message
    assert "F32.1, Z00" in exc.value.message
    assert [m["name"] for m in exc.value.details["medications"]] == ["Salbutamol"]
    assert db.query(FormalPrescription).count() == 0
    assert db.query(ActivePrescription).count() == 0


def test_every_unindicated_medication_is_reported(db, setting):
    a = make_medication(db, "Salbutamol", ["J45"])
    b = make_medication(db, "Losartana", ["I10"])
    with pytest.raises(ValidationError) as exc:
        prescription_service.create_formal_prescription(db, rx_payload(setting, [a, b]), setting.doctor)
    assert [m["name"] for m in exc.value.details["medications"]] == ["Salbutamol", "Losartana"]


def test_draft_consultation_cannot_be_prescribed_against(db, setting):
    draft = make_consultation(db, setting.doctor, setting.patient, codes=("F32.1",))
    med = make_medication(db, "Sertralina", ["F32.1"])
    payload = rx_payload(setting, [med])
    payload.consultation_id = draft.id

    with pytest.raises(InvalidStateError):
        prescription_service.create_formal_prescription(db, payload, setting.doctor)


def test_patient_must_match_consultation(db, setting):
    other_patient = make_patient(db, setting.doctor, email="other.patient@test.example.com")
    med = make_medication(db, "Sertralina", ["F32.1"])
    payload = rx_payload(setting, [med])
    payload.patient_id = other_patient.id

    with pytest.raises(ValidationError):
        prescription_service.create_formal_prescription(db, payload, setting.doctor)


def test_only_the_consulting_clinician_prescribes(db, setting):
    outsider = make_clinician(db, email="other@test.example.com", crm="CRM-RJ 999")
    med = make_medication(db, "Sertralina", ["F32.1"])
    with pytest.raises(UnauthorizedError):
        prescription_service.create_formal_prescription(db, rx_payload(setting, [med]), outsider)


def test_unknown_medication(db, setting):
    payload = FormalPrescriptionCreate(
        consultation_id=setting.consultation.id,
        patient_id=setting.patient.id,
        type="SIMPLES",
        items=[{"medication_id": "missing", "dosage": "50mg", "quantity": "1 caixa"}],
    )
    with pytest.raises(NotFoundError):
        prescription_service.create_formal_prescription(db, payload, setting.doctor)


def test_type_mismatch_is_recorded_not_blocking(db, setting):
    clonazepam = make_medication(db, "Clonazepam", ["F32.1"], controlled=True)

    p = prescription_service.create_formal_prescription(db, rx_payload(setting, [clonazepam], "SIMPLES"), setting.doctor)

    assert p.type == "SIMPLES"
    evt = db.query(AuditEvent).filter(AuditEvent.event_type == "prescription_type_mismatch").one()
    assert evt.target_id == p.id
    assert "CONTROLADA" in evt.meta_json


def test_antimicrobial_validity_is_ten_days(db, setting):
    amoxicillin = make_medication(db, "Amoxicilina", ["Z00"], tags=["antibiotic"])
    p = prescription_service.create_formal_prescription(
        db, rx_payload(setting, [amoxicillin], "ANTIMICROBIANA"), setting.doctor
    )
    assert p.valid_until - p.created_at == timedelta(days=10)
    assert db.query(AuditEvent).filter(AuditEvent.event_type == "prescription_type_mismatch").count() == 0


def test_determine_prescription_type():
    def med(tags=(), controlled=False):
        return SimpleNamespace(interaction_tags_json=json.dumps(list(tags)), is_controlled=controlled)

    assert prescription_service.determine_prescription_type([med()]) == "SIMPLES"
    assert prescription_service.determine_prescription_type([med(), med(controlled=True)]) == "CONTROLADA"
    assert prescription_service.determine_prescription_type([med(controlled=True), med(["antibiotic"])]) == "ANTIMICROBIANA"


def test_new_prescription_replaces_active_entry(db, setting):
    sertraline = make_medication(db, "Sertralina", ["F32.1"])
    first = prescription_service.create_formal_prescription(db, rx_payload(setting, [sertraline]), setting.doctor)
    second = prescription_service.create_formal_prescription(
        db, rx_payload(setting, [sertraline], frequency="1x ao dia"), setting.doctor
    )

    rows = db.query(ActivePrescription).filter(ActivePrescription.medication_id == sertraline.id).all()
    assert len(rows) == 2
    active = [r for r in rows if r.is_active]
    assert len(active) == 1
    assert active[0].source_prescription_id == second.id
    assert active[0].frequency == "1x ao dia"
    old = next(r for r in rows if r.source_prescription_id == first.id)
    assert old.is_active is False
    assert old.end_date is not None


def test_active_list_sync_is_replayable(db, setting):
    sertraline = make_medication(db, "Sertralina", ["F32.1"])
    p = prescription_service.create_formal_prescription(db, rx_payload(setting, [sertraline]), setting.doctor)

    applied = prescription_service.apply_active_list_sync(db, prescription_service.build_active_list_sync(p))
    db.commit()

    assert applied == 0
    assert db.query(ActivePrescription).count() == 1


def test_revoke_is_one_way(db, setting):
    sertraline = make_medication(db, "Sertralina", ["F32.1"])
    p = prescription_service.create_formal_prescription(db, rx_payload(setting, [sertraline]), setting.doctor)

    with pytest.raises(ValidationError):
        prescription_service.revoke_prescription(db, p.id, setting.doctor.id, "short")

    revoked = prescription_service.revoke_prescription(db, p.id, setting.doctor.id, "Troca de esquema terapêutico")
    assert revoked.is_valid is False
    first_revoked_at = revoked.revoked_at

    with pytest.raises(InvalidStateError):
        prescription_service.revoke_prescription(db, p.id, setting.doctor.id, "Segunda tentativa de revogação")

    db.expire_all()
    assert db.get(FormalPrescription, p.id).revoked_at == first_revoked_at
