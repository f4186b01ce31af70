import base64

from fastapi import APIRouter

from api.deps import ClinicianDep, CurrentUserDep, DbDep
from core.errors import NotFoundError, UnauthorizedError
from models.medication import Medication
from models.user import User
from schemas.prescription import (
    ActivePrescriptionsResponse,
    FormalPrescriptionCreate,
    FormalPrescriptionResponse,
    FormalPrescriptionsResponse,
    MedicationsResponse,
    PrescriptionRevoke,
)
from services import prescription_service
from services.report_service import build_prescription_export_json, build_prescription_pdf_bytes

router = APIRouter()


def _ensure_can_read_patient(db, requester: User, patient_id: str) -> None:
    if requester.role == "patient":
        if requester.id != patient_id:
            raise UnauthorizedError("Patients can only read their own prescriptions.", details={"patient_id": patient_id})
        return
    patient = db.query(User).filter(User.id == patient_id, User.role == "patient").first()
    if not patient:
        raise NotFoundError("Patient", patient_id)
    if patient.clinician_id != requester.id:
        raise UnauthorizedError("Patient is not assigned to this clinician.", details={"patient_id": patient_id})


@router.post("/formal-prescriptions", response_model=FormalPrescriptionResponse, status_code=201)
def create_formal_prescription(payload: FormalPrescriptionCreate, db: DbDep, user: ClinicianDep):
    p = prescription_service.create_formal_prescription(db, payload, prescriber=user)
    return prescription_service.to_response(db, p)


@router.get("/formal-prescriptions/patient/{patient_id}", response_model=FormalPrescriptionsResponse)
def patient_formal_prescriptions(patient_id: str, db: DbDep, user: CurrentUserDep):
    _ensure_can_read_patient(db, user, patient_id)
    rows = prescription_service.list_for_patient(db, patient_id)
    return FormalPrescriptionsResponse(
        patient_id=str(patient_id), prescriptions=[prescription_service.to_response(db, p) for p in rows]
    )


@router.get("/formal-prescriptions/{prescription_id}", response_model=FormalPrescriptionResponse)
def get_formal_prescription(prescription_id: str, db: DbDep, user: CurrentUserDep):
    p = prescription_service.get_prescription(db, prescription_id, user)
    return prescription_service.to_response(db, p)


@router.post("/formal-prescriptions/{prescription_id}/revoke", response_model=FormalPrescriptionResponse)
def revoke_formal_prescription(prescription_id: str, payload: PrescriptionRevoke, db: DbDep, user: ClinicianDep):
    p = prescription_service.revoke_prescription(db, prescription_id, user.id, payload.revoked_reason)
    return prescription_service.to_response(db, p)


@router.get("/formal-prescriptions/{prescription_id}/export.json")
def export_prescription_json(prescription_id: str, db: DbDep, user: CurrentUserDep):
    return build_prescription_export_json(db, prescription_id=prescription_id, requester=user)


@router.get("/formal-prescriptions/{prescription_id}/export.pdf")
def export_prescription_pdf(prescription_id: str, db: DbDep, user: CurrentUserDep):
    pdf = build_prescription_pdf_bytes(db, prescription_id=prescription_id, requester=user)
    return {
        "filename": f"mindwatch_prescription_{prescription_id}.pdf",
        "content_type": "application/pdf",
        "base64": base64.b64encode(pdf).decode("utf-8"),
    }


@router.get("/patients/{patient_id}/active-medications", response_model=ActivePrescriptionsResponse)
def patient_active_medications(patient_id: str, db: DbDep, user: CurrentUserDep):
    _ensure_can_read_patient(db, user, patient_id)
    rows = prescription_service.active_medications(db, patient_id)
    return ActivePrescriptionsResponse(patient_id=str(patient_id), medications=prescription_service.active_to_item(db, rows))


@router.get("/medications", response_model=MedicationsResponse)
def list_medications(db: DbDep, user: ClinicianDep, q: str | None = None):
    query = db.query(Medication)
    if q:
        query = query.filter(Medication.name.ilike(f"%{q}%"))
    return MedicationsResponse(
        medications=[prescription_service.medication_to_item(m) for m in query.order_by(Medication.name).all()]
    )
