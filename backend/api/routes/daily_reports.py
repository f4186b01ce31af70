from fastapi import APIRouter

from api.deps import ClinicianDep, DbDep, PatientDep
from core.errors import NotFoundError, UnauthorizedError
from models.user import User
from schemas.daily_report import DailyReportCreate, DailyReportItem, DailyReportSubmitResponse, DailyReportsResponse
from services import daily_report_service

router = APIRouter()


@router.post("/daily-reports", response_model=DailyReportSubmitResponse, status_code=201)
def submit_daily_report(payload: DailyReportCreate, db: DbDep, user: PatientDep):
    result = daily_report_service.submit_daily_report(db, patient=user, payload=payload)
    return DailyReportSubmitResponse(
        report=daily_report_service.to_item(result.report),
        alert_id=str(result.alert.id) if result.alert else None,
        trigger_reasons=list(result.evaluation.reasons),
    )


@router.get("/daily-reports", response_model=DailyReportsResponse)
def my_daily_reports(db: DbDep, user: PatientDep, limit: int = 30):
    reports = daily_report_service.list_for_patient(db, user.id, limit=limit)
    return DailyReportsResponse(patient_id=str(user.id), reports=[daily_report_service.to_item(r) for r in reports])


@router.get("/daily-reports/today", response_model=DailyReportItem | None)
def my_daily_report_today(db: DbDep, user: PatientDep):
    r = daily_report_service.find_today(db, user.id)
    return daily_report_service.to_item(r) if r else None


@router.get("/patients/{patient_id}/daily-reports", response_model=DailyReportsResponse)
def patient_daily_reports(patient_id: str, db: DbDep, user: ClinicianDep, limit: int = 30):
    patient = db.query(User).filter(User.id == patient_id, User.role == "patient").first()
    if not patient:
        raise NotFoundError("Patient", patient_id)
    if patient.clinician_id != user.id:
        raise UnauthorizedError("Patient is not assigned to this clinician.", details={"patient_id": patient_id})

    reports = daily_report_service.list_for_patient(db, patient_id, limit=limit)
    return DailyReportsResponse(patient_id=str(patient_id), reports=[daily_report_service.to_item(r) for r in reports])
