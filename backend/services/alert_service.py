"""
Alert lifecycle.

    PENDING -> VIEWED -> CONTACTED -> RESOLVED | FALSE_POSITIVE

The transition table below is the only place allowed moves are defined. Every status
write is a conditional update keyed on the status that was validated, so two
concurrent transitions on the same alert cannot both succeed.
"""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import desc, update
from sqlalchemy.orm import Query, Session

from core.clock import utcnow
from core.config import settings
from core.errors import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from core.logging import get_logger
from models.alert import (
    ALERT_CONTACTED,
    ALERT_FALSE_POSITIVE,
    ALERT_PENDING,
    ALERT_RESOLVED,
    ALERT_VIEWED,
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
    Alert,
)
from models.user import User
from schemas.alert import AlertItem, AlertStatsResponse
from services.audit_service import log_event
from services.notification_service import EVENT_ALERT_UPDATED, EVENT_NEW_ALERT, notify_clinician
from services.risk_service import REASON_DELIMITER

logger = get_logger(__name__)

ALERT_TRANSITIONS: dict[str, frozenset[str]] = {
    ALERT_PENDING: frozenset({ALERT_VIEWED}),
    ALERT_VIEWED: frozenset({ALERT_CONTACTED}),
    ALERT_CONTACTED: frozenset({ALERT_RESOLVED, ALERT_FALSE_POSITIVE}),
    ALERT_RESOLVED: frozenset(),
    ALERT_FALSE_POSITIVE: frozenset(),
}
TERMINAL_STATUSES = frozenset(s for s, nxt in ALERT_TRANSITIONS.items() if not nxt)


def allowed_transitions(status: str) -> frozenset[str]:
    return ALERT_TRANSITIONS.get(status, frozenset())


def ensure_transition(current: str, target: str) -> None:
    allowed = allowed_transitions(current)
    if target not in allowed:
        allowed_text = ", ".join(sorted(allowed)) or "none"
        raise InvalidStateError(
            f"Invalid transition: {current} -> {target}. Allowed: {allowed_text}",
            details={"current_status": current, "requested_status": target, "allowed": sorted(allowed)},
        )


def open_alert(db: Session, patient_id: str, daily_report_id: str | None, reasons: Sequence[str]) -> Alert:
    """Add a PENDING alert to the caller's transaction. Every current trigger is HIGH severity."""
    alert = Alert(
        patient_id=patient_id,
        daily_report_id=daily_report_id,
        severity=SEVERITY_HIGH,
        trigger_source=REASON_DELIMITER.join(reasons),
        status=ALERT_PENDING,
    )
    db.add(alert)
    db.flush()
    log_event(
        db,
        "alert_created",
        target_type="alert",
        target_id=alert.id,
        meta={"patient_id": patient_id, "severity": alert.severity, "trigger_source": alert.trigger_source},
    )
    logger.info("Alert %s (%s) opened for patient %s", alert.id, alert.severity, patient_id)
    return alert


def announce_new_alert(alert: Alert, patient: User) -> None:
    notify_clinician(
        patient.clinician_id,
        EVENT_NEW_ALERT,
        {
            "alert_id": alert.id,
            "patient_name": patient.name,
            "severity": alert.severity,
            "trigger_reasons": alert.trigger_source.split(REASON_DELIMITER),
        },
    )


def _scoped_alerts(db: Session, clinician_id: str) -> Query:
    # Authorization boundary: a clinician only ever sees alerts of their own patients.
    return db.query(Alert).join(User, User.id == Alert.patient_id).filter(User.clinician_id == clinician_id)


def find_all(
    db: Session, clinician_id: str, status: str | None = None, severity: str | None = None
) -> list[Alert]:
    q = _scoped_alerts(db, clinician_id)
    if status:
        q = q.filter(Alert.status == status)
    if severity:
        q = q.filter(Alert.severity == severity)
    return q.order_by(desc(Alert.created_at)).all()


def find_by_patient(db: Session, patient_id: str, clinician_id: str) -> list[Alert]:
    patient = db.query(User).filter(User.id == patient_id, User.role == "patient").first()
    if not patient:
        raise NotFoundError("Patient", patient_id)
    if patient.clinician_id != clinician_id:
        raise UnauthorizedError("Patient is not assigned to this clinician.", details={"patient_id": patient_id})
    return db.query(Alert).filter(Alert.patient_id == patient_id).order_by(desc(Alert.created_at)).all()


def find_one(db: Session, alert_id: str, clinician_id: str) -> tuple[Alert, User]:
    alert = db.get(Alert, alert_id)
    if not alert:
        raise NotFoundError("Alert", alert_id)
    patient = db.get(User, alert.patient_id)
    if not patient or patient.clinician_id != clinician_id:
        raise UnauthorizedError("Alert belongs to a patient not assigned to this clinician.", details={"alert_id": alert_id})
    return alert, patient


def compare_and_set_status(db: Session, alert_id: str, expected: str, values: dict[str, Any]) -> bool:
    """Single conditional write: applies `values` only if the alert is still in `expected`."""
    result = db.execute(
        update(Alert)
        .where(Alert.id == alert_id, Alert.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def update_status(
    db: Session,
    alert_id: str,
    target_status: str,
    acting_clinician_id: str,
    notes: str | None = None,
    contact_method: str | None = None,
) -> Alert:
    if target_status not in ALERT_TRANSITIONS:
        raise ValidationError(
            f"Unknown alert status: {target_status}.",
            details={"status": target_status, "expected": sorted(ALERT_TRANSITIONS)},
        )

    alert, patient = find_one(db, alert_id, acting_clinician_id)
    current = alert.status
    ensure_transition(current, target_status)

    now = utcnow()
    values: dict[str, Any] = {"status": target_status, "updated_at": now, "reviewed_by": acting_clinician_id}
    if notes is not None:
        values["resolution_notes"] = notes
    if contact_method is not None:
        values["contact_method"] = contact_method
    if target_status in TERMINAL_STATUSES:
        values["resolved_at"] = now

    if not compare_and_set_status(db, alert_id, current, values):
        db.rollback()
        fresh = db.get(Alert, alert_id)
        found = fresh.status if fresh else None
        raise InvalidStateError(
            f"Alert {alert_id} changed concurrently: expected {current}, found {found}.",
            details={"current_status": found, "requested_status": target_status},
        )

    log_event(
        db,
        "alert_status_changed",
        actor_user_id=acting_clinician_id,
        target_type="alert",
        target_id=alert_id,
        meta={"from": current, "to": target_status, "contact_method": contact_method},
    )
    db.commit()
    db.refresh(alert)
    logger.info("Alert %s moved %s -> %s by %s", alert_id, current, target_status, acting_clinician_id)

    notify_clinician(patient.clinician_id, EVENT_ALERT_UPDATED, {"alert_id": alert.id, "new_status": alert.status})
    return alert


def compute_stats(db: Session, clinician_id: str, now: datetime | None = None) -> AlertStatsResponse:
    """Counts over the clinician's own alerts. SLA breach is evaluated against `now` on every call."""
    now = now or utcnow()
    deadline = now - timedelta(hours=settings.alert_sla_hours)

    rows = _scoped_alerts(db, clinician_id).with_entities(Alert.severity, Alert.status, Alert.created_at).all()
    pending = [r for r in rows if r.status == ALERT_PENDING]

    def count(status: str) -> int:
        return sum(1 for r in rows if r.status == status)

    return AlertStatsResponse(
        total=len(rows),
        pending=len(pending),
        high_pending=sum(1 for r in pending if r.severity == SEVERITY_HIGH),
        medium_pending=sum(1 for r in pending if r.severity == SEVERITY_MEDIUM),
        viewed=count(ALERT_VIEWED),
        contacted=count(ALERT_CONTACTED),
        resolved=count(ALERT_RESOLVED),
        false_positive=count(ALERT_FALSE_POSITIVE),
        sla_breached=sum(1 for r in pending if r.created_at < deadline),
    )


def to_item(a: Alert, patient_name: str | None = None) -> AlertItem:
    return AlertItem(
        id=str(a.id),
        patient_id=str(a.patient_id),
        patient_name=patient_name,
        severity=a.severity,
        trigger_source=a.trigger_source,
        status=a.status,
        resolution_notes=a.resolution_notes,
        contact_method=a.contact_method,
        created_at=a.created_at.isoformat(),
        updated_at=a.updated_at.isoformat(),
        resolved_at=a.resolved_at.isoformat() if a.resolved_at else None,
    )
