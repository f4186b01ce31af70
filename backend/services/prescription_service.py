"""
Formal prescriptions.

A formal prescription can only be issued against a FINALIZED consultation, and every
medication on it must be indicated for at least one of the consultation's diagnoses.
The prescription, its signature, the audit trail and the patient's active-medication
list are committed together.
"""
from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import desc, update
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.config import settings
from core.errors import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from core.logging import get_logger
from core.signing import signature_hash, signatures_match
from models.consultation import CONSULTATION_FINALIZED, Consultation
from models.medication import Medication
from models.prescription import (
    PRESCRIPTION_ANTIMICROBIANA,
    PRESCRIPTION_CONTROLADA,
    PRESCRIPTION_SIMPLES,
    ActivePrescription,
    FormalPrescription,
    PrescriptionItem,
)
from models.user import User
from schemas.prescription import (
    ActivePrescriptionItem,
    FormalPrescriptionCreate,
    FormalPrescriptionResponse,
    MedicationItem,
    PrescriptionItemResponse,
)
from services.audit_service import log_event
from services.consultation_service import diagnosis_codes

logger = get_logger(__name__)

VALIDITY_DAYS = {
    PRESCRIPTION_SIMPLES: 30,
    PRESCRIPTION_CONTROLADA: 30,
    PRESCRIPTION_ANTIMICROBIANA: 10,
}
ANTIBIOTIC_TAG = "antibiotic"
MIN_REVOKE_REASON_LENGTH = 10


def indication_codes(m: Medication) -> list[str]:
    return json.loads(m.indication_codes_json or "[]")


def interaction_tags(m: Medication) -> list[str]:
    return json.loads(m.interaction_tags_json or "[]")


def cross_validate(consultation_codes: Sequence[str], medications: Iterable[Medication]) -> None:
    """Every medication must share at least one code with the consultation's diagnoses."""
    diagnoses = set(consultation_codes)
    unindicated = [m for m in medications if not diagnoses.intersection(indication_codes(m))]
    if not unindicated:
        return

    messages = [
        f'Medication "{m.name}" is not indicated for the diagnosed conditions. '
        f"Medication indications: {', '.join(indication_codes(m)) or 'none'}. "
        f"Consultation diagnoses: {', '.join(consultation_codes) or 'none'}."
        for m in unindicated
    ]
    raise ValidationError(
        " ".join(messages),
        details={
            "medications": [
                {"id": m.id, "name": m.name, "indications": indication_codes(m)} for m in unindicated
            ],
            "consultation_diagnoses": list(consultation_codes),
        },
    )


def determine_prescription_type(medications: Iterable[Medication]) -> str:
    meds = list(medications)
    if any(ANTIBIOTIC_TAG in interaction_tags(m) for m in meds):
        return PRESCRIPTION_ANTIMICROBIANA
    if any(m.is_controlled for m in meds):
        return PRESCRIPTION_CONTROLADA
    return PRESCRIPTION_SIMPLES


def calculate_valid_until(prescription_type: str, issued_at: datetime) -> datetime:
    return issued_at + timedelta(days=VALIDITY_DAYS[prescription_type])


def signature_fields(p: FormalPrescription, signed_at: datetime, credential: str) -> list[tuple[str, Any]]:
    # Fixed order, mirrors the consultation signature.
    return [
        ("id", p.id),
        ("consultation_id", p.consultation_id),
        ("patient_id", p.patient_id),
        ("type", p.type),
        (
            "items",
            [
                {
                    "position": i.position,
                    "medication_id": i.medication_id,
                    "dosage": i.dosage,
                    "quantity": i.quantity,
                    "form": i.form,
                    "duration": i.duration,
                    "instructions": i.instructions,
                }
                for i in sorted(p.items, key=lambda i: i.position)
            ],
        ),
        ("signed_at", signed_at),
        ("credential", credential),
    ]


def compute_signature(p: FormalPrescription, signed_at: datetime, credential: str) -> str:
    return signature_hash(signature_fields(p, signed_at, credential))


def verify_signature(p: FormalPrescription) -> bool:
    if not p.signed_at or not p.signed_credential:
        return False
    return signatures_match(p.signature_hash, compute_signature(p, p.signed_at, p.signed_credential))


@dataclass(frozen=True)
class ActiveListUpsert:
    """One idempotent write to the active-medication list, derived from a committed formal prescription."""

    source_prescription_id: str
    patient_id: str
    medication_id: str
    dosage: str
    frequency: str
    form: str | None
    duration: str | None
    instructions: str | None
    end_date: datetime


def build_active_list_sync(p: FormalPrescription) -> list[ActiveListUpsert]:
    return [
        ActiveListUpsert(
            source_prescription_id=p.id,
            patient_id=p.patient_id,
            medication_id=item.medication_id,
            dosage=item.dosage,
            frequency=item.frequency or settings.default_prescription_frequency,
            form=item.form,
            duration=item.duration,
            instructions=item.instructions,
            end_date=p.valid_until,
        )
        for item in sorted(p.items, key=lambda i: i.position)
    ]


def apply_active_list_sync(db: Session, upserts: Iterable[ActiveListUpsert], now: datetime | None = None) -> int:
    """
    Deactivate the patient's current entry for each medication and add the new one.
    Safe to replay: an upsert whose source prescription already produced a row is skipped.
    Does not commit.
    """
    now = now or utcnow()
    applied = 0
    for u in upserts:
        already = (
            db.query(ActivePrescription.id)
            .filter(
                ActivePrescription.source_prescription_id == u.source_prescription_id,
                ActivePrescription.medication_id == u.medication_id,
            )
            .first()
        )
        if already:
            continue

        db.execute(
            update(ActivePrescription)
            .where(
                ActivePrescription.patient_id == u.patient_id,
                ActivePrescription.medication_id == u.medication_id,
                ActivePrescription.is_active.is_(True),
            )
            .values(is_active=False, end_date=now)
            .execution_options(synchronize_session=False)
        )
        db.add(
            ActivePrescription(
                patient_id=u.patient_id,
                medication_id=u.medication_id,
                source_prescription_id=u.source_prescription_id,
                dosage=u.dosage,
                frequency=u.frequency,
                form=u.form,
                duration=u.duration,
                instructions=u.instructions,
                start_date=now,
                end_date=u.end_date,
                is_active=True,
            )
        )
        db.flush()
        applied += 1
    return applied


def create_formal_prescription(db: Session, payload: FormalPrescriptionCreate, prescriber: User) -> FormalPrescription:
    consultation = db.get(Consultation, payload.consultation_id)
    if not consultation:
        raise NotFoundError("Consultation", payload.consultation_id)
    patient = db.query(User).filter(User.id == payload.patient_id, User.role == "patient").first()
    if not patient:
        raise NotFoundError("Patient", payload.patient_id)

    if consultation.doctor_id != prescriber.id:
        raise UnauthorizedError(
            "Only the consultation's clinician can prescribe against it.",
            details={"consultation_id": consultation.id},
        )
    if consultation.status != CONSULTATION_FINALIZED:
        raise InvalidStateError(
            "Cannot create formal prescription for non-finalized consultation. Please finalize the consultation first.",
            details={"consultation_id": consultation.id, "current_status": consultation.status},
        )
    if consultation.patient_id != patient.id:
        raise ValidationError(
            "Patient does not match the consultation.",
            details={"patient_id": patient.id, "consultation_patient_id": consultation.patient_id},
        )

    medications: list[Medication] = []
    for item in payload.items:
        med = db.get(Medication, item.medication_id)
        if not med:
            raise NotFoundError("Medication", item.medication_id)
        medications.append(med)

    cross_validate(diagnosis_codes(consultation), medications)

    credential = (prescriber.crm or "").strip()
    if not credential:
        raise ValidationError(
            "A signing credential (CRM) is required to prescribe.", details={"missing_fields": ["credential"]}
        )

    declared = payload.type
    determined = determine_prescription_type(medications)

    now = utcnow()
    p = FormalPrescription(
        id=str(uuid.uuid4()),
        consultation_id=consultation.id,
        patient_id=patient.id,
        prescriber_id=prescriber.id,
        type=declared,
        is_valid=True,
        valid_until=calculate_valid_until(declared, now),
        created_at=now,
        items=[
            PrescriptionItem(
                position=i,
                medication_id=item.medication_id,
                dosage=item.dosage,
                quantity=item.quantity,
                form=item.form,
                duration=item.duration,
                instructions=item.instructions,
                frequency=item.frequency,
            )
            for i, item in enumerate(payload.items)
        ],
    )

    try:
        db.add(p)
        db.flush()

        # Declared type wins; disagreement is recorded, never blocking.
        if declared != determined:
            logger.warning(
                "Prescription type mismatch on %s: clinician declared %s, system determined %s",
                p.id,
                declared,
                determined,
            )
            log_event(
                db,
                "prescription_type_mismatch",
                actor_user_id=prescriber.id,
                target_type="formal_prescription",
                target_id=p.id,
                meta={"declared": declared, "determined": determined},
            )

        signed_at = utcnow()
        p.signature_hash = compute_signature(p, signed_at, credential)
        p.signed_at = signed_at
        p.signed_credential = credential

        apply_active_list_sync(db, build_active_list_sync(p), now=signed_at)

        log_event(
            db,
            "prescription_created",
            actor_user_id=prescriber.id,
            target_type="formal_prescription",
            target_id=p.id,
            meta={"type": declared, "items": len(p.items), "signature_hash": p.signature_hash},
        )
        db.commit()
    except Exception:
        # Nothing was issued: the signature only exists once the row is committed.
        db.rollback()
        raise

    db.refresh(p)
    logger.info("Formal prescription %s (%s) issued by %s for patient %s", p.id, p.type, prescriber.id, patient.id)
    return p


def _can_view(requester: User, p: FormalPrescription, db: Session) -> bool:
    if requester.role == "clinician":
        if p.prescriber_id == requester.id:
            return True
        patient = db.get(User, p.patient_id)
        return bool(patient and patient.clinician_id == requester.id)
    return requester.id == p.patient_id


def get_prescription(db: Session, prescription_id: str, requester: User) -> FormalPrescription:
    p = db.get(FormalPrescription, prescription_id)
    if not p:
        raise NotFoundError("Prescription", prescription_id)
    if not _can_view(requester, p, db):
        raise UnauthorizedError("Not allowed to view this prescription.", details={"prescription_id": prescription_id})
    return p


def list_for_patient(db: Session, patient_id: str) -> list[FormalPrescription]:
    return (
        db.query(FormalPrescription)
        .filter(FormalPrescription.patient_id == patient_id)
        .order_by(desc(FormalPrescription.created_at))
        .all()
    )


def active_medications(db: Session, patient_id: str) -> list[ActivePrescription]:
    return (
        db.query(ActivePrescription)
        .filter(ActivePrescription.patient_id == patient_id, ActivePrescription.is_active.is_(True))
        .order_by(desc(ActivePrescription.start_date))
        .all()
    )


def revoke_prescription(db: Session, prescription_id: str, acting_clinician_id: str, reason: str | None) -> FormalPrescription:
    if not reason or len(reason.strip()) < MIN_REVOKE_REASON_LENGTH:
        raise ValidationError(
            f"Revocation reason must be at least {MIN_REVOKE_REASON_LENGTH} characters.",
            details={"missing_fields": ["revoked_reason"], "min_length": MIN_REVOKE_REASON_LENGTH},
        )

    p = db.get(FormalPrescription, prescription_id)
    if not p:
        raise NotFoundError("Prescription", prescription_id)
    if p.prescriber_id != acting_clinician_id:
        raise UnauthorizedError("Only the prescriber can revoke.", details={"prescription_id": prescription_id})
    if not p.is_valid:
        raise InvalidStateError("Prescription is already revoked.", details={"revoked_at": p.revoked_at.isoformat() if p.revoked_at else None})

    now = utcnow()
    result = db.execute(
        update(FormalPrescription)
        .where(FormalPrescription.id == prescription_id, FormalPrescription.is_valid.is_(True))
        .values(is_valid=False, revoked_at=now, revoked_reason=reason.strip())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidStateError("Prescription is already revoked.", details={"prescription_id": prescription_id})

    log_event(
        db,
        "prescription_revoked",
        actor_user_id=acting_clinician_id,
        target_type="formal_prescription",
        target_id=prescription_id,
        meta={"reason": reason.strip()},
    )
    db.commit()
    db.refresh(p)
    logger.info("Formal prescription %s revoked by %s", prescription_id, acting_clinician_id)
    return p


def _medication_names(db: Session, ids: Iterable[str]) -> dict[str, str]:
    ids = list(set(ids))
    if not ids:
        return {}
    return {m.id: m.name for m in db.query(Medication).filter(Medication.id.in_(ids)).all()}


def to_response(db: Session, p: FormalPrescription) -> FormalPrescriptionResponse:
    names = _medication_names(db, (i.medication_id for i in p.items))
    return FormalPrescriptionResponse(
        id=str(p.id),
        consultation_id=str(p.consultation_id),
        patient_id=str(p.patient_id),
        prescriber_id=str(p.prescriber_id),
        type=p.type,
        is_valid=bool(p.is_valid),
        valid_until=p.valid_until.isoformat(),
        signature_hash=p.signature_hash,
        signed_at=p.signed_at.isoformat() if p.signed_at else None,
        revoked_at=p.revoked_at.isoformat() if p.revoked_at else None,
        revoked_reason=p.revoked_reason,
        created_at=p.created_at.isoformat(),
        items=[
            PrescriptionItemResponse(
                position=int(i.position),
                medication_id=str(i.medication_id),
                medication_name=names.get(i.medication_id),
                dosage=i.dosage,
                quantity=i.quantity,
                form=i.form,
                duration=i.duration,
                instructions=i.instructions,
                frequency=i.frequency,
            )
            for i in p.items
        ],
    )


def active_to_item(db: Session, rows: Sequence[ActivePrescription]) -> list[ActivePrescriptionItem]:
    names = _medication_names(db, (r.medication_id for r in rows))
    return [
        ActivePrescriptionItem(
            id=str(r.id),
            medication_id=str(r.medication_id),
            medication_name=names.get(r.medication_id),
            dosage=r.dosage,
            frequency=r.frequency,
            form=r.form,
            duration=r.duration,
            instructions=r.instructions,
            start_date=r.start_date.isoformat(),
            end_date=r.end_date.isoformat() if r.end_date else None,
            source_prescription_id=r.source_prescription_id,
        )
        for r in rows
    ]


def medication_to_item(m: Medication) -> MedicationItem:
    return MedicationItem(
        id=str(m.id),
        name=m.name,
        active_ingredient=m.active_ingredient,
        concentration=m.concentration,
        form=m.form,
        indication_codes=indication_codes(m),
        interaction_tags=interaction_tags(m),
        is_controlled=bool(m.is_controlled),
    )
