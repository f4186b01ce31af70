"""
Consultation lifecycle and signing.

    DRAFT -> FINALIZED   (signed, terminal)
    DRAFT -> CANCELLED   (justified, terminal)

Clinical content can only change while DRAFT. Finalization validates the record,
computes a SHA-256 signature over a fixed field snapshot and flips the status in one
conditional write, so two concurrent finalizations cannot both succeed.
"""
from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any

from sqlalchemy import desc, update
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.errors import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from core.logging import get_logger
from core.signing import signature_hash, signatures_match
from models.consultation import (
    CONSULTATION_CANCELLED,
    CONSULTATION_DRAFT,
    CONSULTATION_FINALIZED,
    Consultation,
)
from models.user import User
from schemas.consultation import ConsultationCreate, ConsultationItem, ConsultationUpdate
from services.audit_service import log_event

logger = get_logger(__name__)

CONSULTATION_TRANSITIONS: dict[str, frozenset[str]] = {
    CONSULTATION_DRAFT: frozenset({CONSULTATION_FINALIZED, CONSULTATION_CANCELLED}),
    CONSULTATION_FINALIZED: frozenset(),
    CONSULTATION_CANCELLED: frozenset(),
}

ICD10_PATTERN = re.compile(r"^[A-Z]\d{2}(\.\d{1,2})?$")
ICD10_PATTERN_HINT = "one uppercase letter, two digits, optional '.' plus 1-2 digits (e.g. A00, F32.1)"

MIN_ANAMNESIS_LENGTH = 10
MIN_CANCEL_REASON_LENGTH = 10

REQUIRED_FIELDS = ("date_time", "duration_minutes", "modality")


def diagnosis_codes(c: Consultation) -> list[str]:
    return json.loads(c.icd10_codes_json or "[]")


def ensure_transition(c: Consultation, target: str) -> None:
    allowed = CONSULTATION_TRANSITIONS.get(c.status, frozenset())
    if target not in allowed:
        raise InvalidStateError(
            f"Consultation is {c.status}; cannot move to {target}.",
            details={"current_status": c.status, "requested_status": target, "allowed": sorted(allowed)},
        )


def _get_owned(db: Session, consultation_id: str, acting_clinician_id: str) -> Consultation:
    c = db.get(Consultation, consultation_id)
    if not c:
        raise NotFoundError("Consultation", consultation_id)
    if c.doctor_id != acting_clinician_id:
        raise UnauthorizedError(
            "Consultation belongs to another clinician.", details={"consultation_id": consultation_id}
        )
    return c


def create_consultation(db: Session, doctor: User, payload: ConsultationCreate) -> Consultation:
    patient = db.query(User).filter(User.id == payload.patient_id, User.role == "patient").first()
    if not patient:
        raise NotFoundError("Patient", payload.patient_id)

    c = Consultation(
        patient_id=patient.id,
        doctor_id=doctor.id,
        date_time=payload.date_time,
        duration_minutes=payload.duration_minutes,
        modality=payload.modality,
        status=CONSULTATION_DRAFT,
        anamnesis=payload.anamnesis,
        diagnostic_hypothesis=payload.diagnostic_hypothesis,
        treatment_plan=payload.treatment_plan,
        icd10_codes_json=json.dumps(payload.icd10_codes),
    )
    db.add(c)
    db.flush()
    log_event(db, "consultation_created", actor_user_id=doctor.id, target_type="consultation", target_id=c.id)
    db.commit()
    db.refresh(c)
    return c


def update_consultation(
    db: Session, consultation_id: str, acting_clinician_id: str, patch: ConsultationUpdate
) -> Consultation:
    c = _get_owned(db, consultation_id, acting_clinician_id)
    if c.status != CONSULTATION_DRAFT:
        raise InvalidStateError(
            f"Cannot edit a {c.status} consultation.", details={"current_status": c.status}
        )

    changes = patch.model_dump(exclude_unset=True)
    cleared = sorted(f for f in REQUIRED_FIELDS if f in changes and changes[f] is None)
    if cleared:
        raise ValidationError(
            f"Cannot clear required fields: {', '.join(cleared)}.", details={"missing_fields": cleared}
        )
    codes = changes.pop("icd10_codes", None)
    for field, value in changes.items():
        setattr(c, field, value)
    if codes is not None:
        c.icd10_codes_json = json.dumps(codes)

    log_event(
        db,
        "consultation_updated",
        actor_user_id=acting_clinician_id,
        target_type="consultation",
        target_id=c.id,
        meta={"fields": sorted(patch.model_fields_set)},
    )
    db.commit()
    db.refresh(c)
    return c


def get_consultation(db: Session, consultation_id: str, acting_clinician_id: str) -> Consultation:
    return _get_owned(db, consultation_id, acting_clinician_id)


def list_for_doctor(db: Session, doctor_id: str) -> list[Consultation]:
    return (
        db.query(Consultation)
        .filter(Consultation.doctor_id == doctor_id)
        .order_by(desc(Consultation.date_time))
        .all()
    )


def validate_for_finalization(c: Consultation) -> None:
    """Collect every problem in one pass so the clinician can fix them all at once."""
    missing: list[str] = []
    if not c.anamnesis or len(c.anamnesis.strip()) < MIN_ANAMNESIS_LENGTH:
        missing.append("anamnesis")
    if not c.treatment_plan or not c.treatment_plan.strip():
        missing.append("treatment_plan")

    codes = diagnosis_codes(c)
    invalid_codes = [code for code in codes if not isinstance(code, str) or not ICD10_PATTERN.fullmatch(code)]

    problems: list[str] = []
    if "anamnesis" in missing:
        problems.append(f"anamnesis is required (at least {MIN_ANAMNESIS_LENGTH} characters)")
    if "treatment_plan" in missing:
        problems.append("treatment_plan is required")
    if not codes:
        problems.append("at least one diagnosis code is required")
    if invalid_codes:
        problems.append(f"invalid diagnosis codes: {', '.join(map(str, invalid_codes))}; expected {ICD10_PATTERN_HINT}")

    if problems:
        raise ValidationError(
            "Cannot finalize: " + "; ".join(problems) + ".",
            details={
                "missing_fields": missing,
                "invalid_codes": invalid_codes,
                "codes_required": not codes,
                "expected_pattern": ICD10_PATTERN.pattern,
            },
        )


def signature_fields(c: Consultation, signed_at: datetime, credential: str) -> list[tuple[str, Any]]:
    # Fixed order. Anamnesis is not part of the signed payload.
    return [
        ("id", c.id),
        ("patient_id", c.patient_id),
        ("doctor_id", c.doctor_id),
        ("date_time", c.date_time),
        ("duration_minutes", c.duration_minutes),
        ("modality", c.modality),
        ("diagnostic_hypothesis", c.diagnostic_hypothesis),
        ("treatment_plan", c.treatment_plan),
        ("icd10_codes", diagnosis_codes(c)),
        ("signed_at", signed_at),
        ("credential", credential),
    ]


def compute_signature(c: Consultation, signed_at: datetime, credential: str) -> str:
    return signature_hash(signature_fields(c, signed_at, credential))


def verify_signature(c: Consultation) -> bool:
    if c.status != CONSULTATION_FINALIZED or not c.signed_at or not c.signed_credential:
        return False
    return signatures_match(c.signature_hash, compute_signature(c, c.signed_at, c.signed_credential))


def finalize_consultation(
    db: Session, consultation_id: str, acting_clinician_id: str, signing_credential: str | None
) -> Consultation:
    c = _get_owned(db, consultation_id, acting_clinician_id)
    ensure_transition(c, CONSULTATION_FINALIZED)
    validate_for_finalization(c)
    if not signing_credential or not signing_credential.strip():
        raise ValidationError(
            "A signing credential (CRM) is required to finalize.", details={"missing_fields": ["credential"]}
        )

    signed_at = utcnow()
    digest = compute_signature(c, signed_at, signing_credential)

    # Keyed on DRAFT and on the snapshot's updated_at: a concurrent finalize or edit makes this a no-op.
    result = db.execute(
        update(Consultation)
        .where(
            Consultation.id == c.id,
            Consultation.status == CONSULTATION_DRAFT,
            Consultation.updated_at == c.updated_at,
        )
        .values(
            status=CONSULTATION_FINALIZED,
            signed_at=signed_at,
            signature_hash=digest,
            signed_credential=signing_credential,
            updated_at=signed_at,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidStateError(
            "Consultation was modified or finalized concurrently.", details={"consultation_id": consultation_id}
        )

    log_event(
        db,
        "consultation_finalized",
        actor_user_id=acting_clinician_id,
        target_type="consultation",
        target_id=c.id,
        meta={"signature_hash": digest},
    )
    db.commit()
    db.refresh(c)
    logger.info("Consultation %s finalized by %s", c.id, acting_clinician_id)
    return c


def cancel_consultation(db: Session, consultation_id: str, acting_clinician_id: str, reason: str | None) -> Consultation:
    if not reason or len(reason.strip()) < MIN_CANCEL_REASON_LENGTH:
        raise ValidationError(
            f"Cancellation reason must be at least {MIN_CANCEL_REASON_LENGTH} characters.",
            details={"missing_fields": ["cancelled_reason"], "min_length": MIN_CANCEL_REASON_LENGTH},
        )

    c = _get_owned(db, consultation_id, acting_clinician_id)
    if c.status == CONSULTATION_CANCELLED:
        raise InvalidStateError("Consultation is already cancelled.", details={"current_status": c.status})
    ensure_transition(c, CONSULTATION_CANCELLED)

    now = utcnow()
    result = db.execute(
        update(Consultation)
        .where(Consultation.id == c.id, Consultation.status == CONSULTATION_DRAFT)
        .values(status=CONSULTATION_CANCELLED, cancelled_reason=reason.strip(), cancelled_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidStateError("Consultation changed state concurrently.", details={"consultation_id": consultation_id})

    log_event(
        db,
        "consultation_cancelled",
        actor_user_id=acting_clinician_id,
        target_type="consultation",
        target_id=c.id,
        meta={"reason": reason.strip()},
    )
    db.commit()
    db.refresh(c)
    logger.info("Consultation %s cancelled by %s", c.id, acting_clinician_id)
    return c


def to_item(c: Consultation) -> ConsultationItem:
    return ConsultationItem(
        id=str(c.id),
        patient_id=str(c.patient_id),
        doctor_id=str(c.doctor_id),
        date_time=c.date_time.isoformat(),
        duration_minutes=int(c.duration_minutes),
        modality=c.modality,
        status=c.status,
        anamnesis=c.anamnesis,
        diagnostic_hypothesis=c.diagnostic_hypothesis,
        treatment_plan=c.treatment_plan,
        icd10_codes=diagnosis_codes(c),
        signature_hash=c.signature_hash,
        signed_at=c.signed_at.isoformat() if c.signed_at else None,
        cancelled_reason=c.cancelled_reason,
        cancelled_at=c.cancelled_at.isoformat() if c.cancelled_at else None,
    )
