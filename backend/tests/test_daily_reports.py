from datetime import date, timedelta

import pytest

from conftest import make_clinician, make_patient
from core.errors import InvalidStateError
from models import Alert, AuditEvent, DailyReport
from models.alert import ALERT_PENDING, SEVERITY_HIGH
from schemas.daily_report import DailyReportCreate
from services.daily_report_service import submit_daily_report

DAY = date(2026, 10, 10)


def submit(db, patient, day, **fields):
    return submit_daily_report(db, patient, DailyReportCreate(date=day, **fields))


def test_calm_report_is_stored_without_alert(db, hub):
    clinician = make_clinician(db)
    patient = make_patient(db, clinician)

    result = submit(db, patient, DAY, mood_rating=4, mood_level=1)

    assert result.report.risk_flag is False
    assert result.alert is None
    assert db.query(Alert).count() == 0
    events = hub.of_type("new_daily_log")
    assert len(events) == 1
    cid, payload = events[0]
    assert cid == clinician.id
    assert payload["log_id"] == result.report.id
    assert payload["patient_name"] == patient.name
    assert payload["date"] == DAY.isoformat()
    assert payload["risk_flag"] is False
    assert hub.of_type("new_alert") == []


def test_suicidal_ideation_opens_high_alert(db, hub):
    clinician = make_clinician(db)
    patient = make_patient(db, clinician)

    result = submit(db, patient, DAY, mood_level=0, suicidal_ideation_flag=True)

    assert result.report.risk_flag is True
    alert = db.get(Alert, result.alert.id)
    assert alert.status == ALERT_PENDING
    assert alert.severity == SEVERITY_HIGH
    assert alert.trigger_source == "SUICIDAL_IDEATION"
    assert alert.daily_report_id == result.report.id

    [(cid, payload)] = hub.of_type("new_alert")
    assert cid == clinician.id
    assert payload["alert_id"] == alert.id
    assert payload["trigger_reasons"] == ["SUICIDAL_IDEATION"]


def test_third_low_day_opens_depression_alert(db, hub):
    clinician = make_clinician(db)
    patient = make_patient(db, clinician)

    submit(db, patient, DAY - timedelta(days=2), mood_level=-3)
    first_two = submit(db, patient, DAY - timedelta(days=1), mood_level=-2)
    assert first_two.alert is None

    result = submit(db, patient, DAY, mood_level=-2)
    assert result.alert is not None
    assert result.alert.trigger_source == "DEPRESSION_EPISODE"
    assert len(hub.of_type("new_alert")) == 1


def test_client_supplied_risk_flag_is_ignored(db):
    patient = make_patient(db, make_clinician(db))
    payload = DailyReportCreate.model_validate({"date": DAY.isoformat(), "mood_level": 2, "risk_flag": True})
    result = submit_daily_report(db, patient, payload)
    assert result.report.risk_flag is False


def test_duplicate_date_is_rejected(db):
    patient = make_patient(db, make_clinician(db))
    submit(db, patient, DAY, mood_level=1)

    with pytest.raises(InvalidStateError):
        submit(db, patient, DAY, mood_level=-3, suicidal_ideation_flag=True)

    assert db.query(DailyReport).filter(DailyReport.patient_id == patient.id).count() == 1
    assert db.query(Alert).count() == 0


def test_unassigned_patient_still_gets_alert_without_event(db, hub):
    patient = make_patient(db, clinician=None)
    result = submit(db, patient, DAY, suicidal_ideation_flag=True)
    assert result.alert is not None
    assert hub.events == []


def test_submission_is_audited(db):
    patient = make_patient(db, make_clinician(db))
    result = submit(db, patient, DAY, suicidal_ideation_flag=True)
    types = {e.event_type for e in db.query(AuditEvent).all()}
    assert {"daily_report_submitted", "alert_created"} <= types
    assert db.query(AuditEvent).filter(AuditEvent.target_id == result.report.id).count() == 1
