from fastapi import APIRouter

from api.deps import ClinicianDep, DbDep
from schemas.consultation import (
    ConsultationCancel,
    ConsultationCreate,
    ConsultationItem,
    ConsultationsResponse,
    ConsultationUpdate,
    SignatureCheckResponse,
)
from services import consultation_service

router = APIRouter()


@router.post("", response_model=ConsultationItem, status_code=201)
def create_consultation(payload: ConsultationCreate, db: DbDep, user: ClinicianDep):
    c = consultation_service.create_consultation(db, doctor=user, payload=payload)
    return consultation_service.to_item(c)


@router.get("", response_model=ConsultationsResponse)
def list_consultations(db: DbDep, user: ClinicianDep):
    rows = consultation_service.list_for_doctor(db, user.id)
    return ConsultationsResponse(consultations=[consultation_service.to_item(c) for c in rows])


@router.get("/{consultation_id}", response_model=ConsultationItem)
def get_consultation(consultation_id: str, db: DbDep, user: ClinicianDep):
    return consultation_service.to_item(consultation_service.get_consultation(db, consultation_id, user.id))


@router.patch("/{consultation_id}", response_model=ConsultationItem)
def update_consultation(consultation_id: str, payload: ConsultationUpdate, db: DbDep, user: ClinicianDep):
    c = consultation_service.update_consultation(db, consultation_id, user.id, payload)
    return consultation_service.to_item(c)


@router.post("/{consultation_id}/finalize", response_model=ConsultationItem)
def finalize_consultation(consultation_id: str, db: DbDep, user: ClinicianDep):
    # The clinician's CRM is the signing credential.
    c = consultation_service.finalize_consultation(db, consultation_id, user.id, signing_credential=user.crm)
    return consultation_service.to_item(c)


@router.post("/{consultation_id}/cancel", response_model=ConsultationItem)
def cancel_consultation(consultation_id: str, payload: ConsultationCancel, db: DbDep, user: ClinicianDep):
    c = consultation_service.cancel_consultation(db, consultation_id, user.id, payload.cancelled_reason)
    return consultation_service.to_item(c)


@router.get("/{consultation_id}/signature", response_model=SignatureCheckResponse)
def check_signature(consultation_id: str, db: DbDep, user: ClinicianDep):
    c = consultation_service.get_consultation(db, consultation_id, user.id)
    return SignatureCheckResponse(
        id=str(c.id), signature_hash=c.signature_hash, valid=consultation_service.verify_signature(c)
    )
