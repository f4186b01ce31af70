import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.clock import utcnow
from models.base import Base

ALERT_PENDING = "PENDING"
ALERT_VIEWED = "VIEWED"
ALERT_CONTACTED = "CONTACTED"
ALERT_RESOLVED = "RESOLVED"
ALERT_FALSE_POSITIVE = "FALSE_POSITIVE"

SEVERITY_HIGH = "HIGH"
SEVERITY_MEDIUM = "MEDIUM"


class Alert(Base):
    """
    A detected safety concern awaiting clinician review.
    Never deleted; status only moves forward (see services.alert_service.ALERT_TRANSITIONS).
    """

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)
    daily_report_id: Mapped[str | None] = mapped_column(String, ForeignKey("daily_reports.id"), nullable=True)

    severity: Mapped[str] = mapped_column(String, nullable=False, default=SEVERITY_HIGH)
    trigger_source: Mapped[str] = mapped_column(String, nullable=False)  # e.g. "SUICIDAL_IDEATION, DEPRESSION_EPISODE"
    status: Mapped[str] = mapped_column(String, index=True, nullable=False, default=ALERT_PENDING)

    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_method: Mapped[str | None] = mapped_column(String, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)  # clinician user_id

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
