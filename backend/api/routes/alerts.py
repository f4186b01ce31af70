from fastapi import APIRouter

from api.deps import ClinicianDep, DbDep
from models.user import User
from schemas.alert import AlertItem, AlertsResponse, AlertStatsResponse, AlertStatusUpdate
from services import alert_service

router = APIRouter()


def _patient_names(db, alerts) -> dict[str, str]:
    ids = {a.patient_id for a in alerts}
    if not ids:
        return {}
    return {u.id: u.name for u in db.query(User).filter(User.id.in_(ids)).all()}


@router.get("", response_model=AlertsResponse)
def list_alerts(db: DbDep, user: ClinicianDep, status: str | None = None, severity: str | None = None):
    alerts = alert_service.find_all(db, user.id, status=status, severity=severity)
    names = _patient_names(db, alerts)
    return AlertsResponse(alerts=[alert_service.to_item(a, names.get(a.patient_id)) for a in alerts])


@router.get("/stats", response_model=AlertStatsResponse)
def alert_stats(db: DbDep, user: ClinicianDep):
    return alert_service.compute_stats(db, user.id)


@router.get("/patient/{patient_id}", response_model=AlertsResponse)
def patient_alerts(patient_id: str, db: DbDep, user: ClinicianDep):
    alerts = alert_service.find_by_patient(db, patient_id, user.id)
    names = _patient_names(db, alerts)
    return AlertsResponse(alerts=[alert_service.to_item(a, names.get(a.patient_id)) for a in alerts])


@router.get("/{alert_id}", response_model=AlertItem)
def get_alert(alert_id: str, db: DbDep, user: ClinicianDep):
    alert, patient = alert_service.find_one(db, alert_id, user.id)
    return alert_service.to_item(alert, patient.name)


@router.patch("/{alert_id}/status", response_model=AlertItem)
def update_alert_status(alert_id: str, payload: AlertStatusUpdate, db: DbDep, user: ClinicianDep):
    alert = alert_service.update_status(
        db,
        alert_id,
        payload.status,
        acting_clinician_id=user.id,
        notes=payload.notes,
        contact_method=payload.contact_method,
    )
    patient = db.get(User, alert.patient_id)
    return alert_service.to_item(alert, patient.name if patient else None)
