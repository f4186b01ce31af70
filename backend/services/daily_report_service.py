from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.config import settings
from core.errors import InvalidStateError
from core.logging import get_logger
from models.alert import Alert
from models.daily_report import DailyReport
from models.user import User
from schemas.daily_report import DailyReportCreate, DailyReportItem
from services import alert_service
from services.audit_service import log_event
from services.notification_service import EVENT_NEW_DAILY_LOG, notify_clinician
from services.risk_service import RiskEvaluation, evaluate

logger = get_logger(__name__)


@dataclass
class SubmissionResult:
    report: DailyReport
    evaluation: RiskEvaluation
    alert: Alert | None = None


def prior_mood_reports(db: Session, patient_id: str, before: date, limit: int) -> list[DailyReport]:
    return (
        db.query(DailyReport)
        .filter(
            DailyReport.patient_id == patient_id,
            DailyReport.date < before,
            DailyReport.mood_level.is_not(None),
        )
        .order_by(desc(DailyReport.date))
        .limit(limit)
        .all()
    )


def _duplicate_error(report_date: date) -> InvalidStateError:
    return InvalidStateError(
        "Daily report for this date already exists.",
        details={"date": report_date.isoformat()},
    )


def submit_daily_report(db: Session, patient: User, payload: DailyReportCreate) -> SubmissionResult:
    """
    Store a new self-report, run the risk rules against the patient's recent history,
    and open an alert when any rule fires.

    Report, risk flag, alert and audit rows commit in one transaction. Clinician events
    are published only after the commit.
    """
    existing = (
        db.query(DailyReport.id)
        .filter(DailyReport.patient_id == patient.id, DailyReport.date == payload.date)
        .first()
    )
    if existing:
        raise _duplicate_error(payload.date)

    report = DailyReport(
        patient_id=patient.id,
        date=payload.date,
        sleep_bedtime=payload.sleep_bedtime,
        sleep_onset_time=payload.sleep_onset_time,
        sleep_wake_time=payload.sleep_wake_time,
        sleep_quality=payload.sleep_quality,
        sleep_awakenings=payload.sleep_awakenings,
        sleep_difficulty=payload.sleep_difficulty,
        sleep_hours=payload.sleep_hours,
        mood_rating=payload.mood_rating,
        mood_level=payload.mood_level,
        anxiety_level=payload.anxiety_level,
        irritability_level=payload.irritability_level,
        mood_tags_json=json.dumps(payload.mood_tags, ensure_ascii=False),
        symptoms_json=json.dumps(payload.symptoms, ensure_ascii=False),
        notes=payload.notes,
        suicidal_ideation_flag=payload.suicidal_ideation_flag,
        exercise_minutes=payload.exercise_minutes,
        exercise_type=payload.exercise_type,
        exercise_intensity=payload.exercise_intensity,
        menstruation_stage=payload.menstruation_stage,
        life_event_description=payload.life_event_description,
        life_event_impact=payload.life_event_impact,
        created_at=utcnow(),
    )

    # Best effort: a concurrent report for an adjacent date may land between this read and the commit.
    priors = prior_mood_reports(db, patient.id, payload.date, settings.depression_window)
    evaluation = evaluate(report, priors)
    report.risk_flag = evaluation.triggered

    alert = None
    try:
        db.add(report)
        db.flush()
        if evaluation.triggered:
            logger.warning(
                "Risk trigger for patient %s on %s: %s", patient.id, payload.date, evaluation.trigger_source
            )
            alert = alert_service.open_alert(db, patient.id, report.id, evaluation.reasons)
        log_event(
            db,
            "daily_report_submitted",
            actor_user_id=patient.id,
            target_type="daily_report",
            target_id=report.id,
            meta={"date": payload.date.isoformat(), "risk_flag": report.risk_flag},
        )
        db.commit()
    except IntegrityError:
        # Lost the (patient, date) uniqueness race to a concurrent submission.
        db.rollback()
        raise _duplicate_error(payload.date)

    db.refresh(report)
    if alert is not None:
        db.refresh(alert)

    notify_clinician(
        patient.clinician_id,
        EVENT_NEW_DAILY_LOG,
        {
            "log_id": report.id,
            "patient_name": patient.name,
            "mood_rating": report.mood_rating,
            "mood_level": report.mood_level,
            "date": report.date.isoformat(),
            "risk_flag": report.risk_flag,
        },
    )
    if alert is not None:
        alert_service.announce_new_alert(alert, patient)

    return SubmissionResult(report=report, evaluation=evaluation, alert=alert)


def list_for_patient(db: Session, patient_id: str, limit: int | None = None) -> list[DailyReport]:
    q = db.query(DailyReport).filter(DailyReport.patient_id == patient_id).order_by(desc(DailyReport.date))
    if limit:
        q = q.limit(limit)
    return q.all()


def find_today(db: Session, patient_id: str) -> DailyReport | None:
    return (
        db.query(DailyReport)
        .filter(DailyReport.patient_id == patient_id, DailyReport.date == utcnow().date())
        .first()
    )


def to_item(r: DailyReport) -> DailyReportItem:
    return DailyReportItem(
        id=str(r.id),
        patient_id=str(r.patient_id),
        date=r.date.isoformat(),
        mood_rating=r.mood_rating,
        mood_level=r.mood_level,
        anxiety_level=r.anxiety_level,
        irritability_level=r.irritability_level,
        sleep_quality=r.sleep_quality,
        sleep_hours=r.sleep_hours,
        mood_tags=json.loads(r.mood_tags_json or "[]"),
        symptoms=json.loads(r.symptoms_json or "[]"),
        notes=r.notes,
        suicidal_ideation_flag=bool(r.suicidal_ideation_flag),
        risk_flag=bool(r.risk_flag),
        created_at=r.created_at.isoformat(),
    )
