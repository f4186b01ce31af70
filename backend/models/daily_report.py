import uuid
from datetime import date as date_type, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.clock import utcnow
from models.base import Base


class DailyReport(Base):
    """
    One patient self-assessment per calendar date.
    Append-only: there is no update or delete path.
    """

    __tablename__ = "daily_reports"
    __table_args__ = (UniqueConstraint("patient_id", "date", name="uq_daily_reports_patient_date"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)
    date: Mapped[date_type] = mapped_column(Date, index=True, nullable=False)

    # Sleep
    sleep_bedtime: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    sleep_onset_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    sleep_wake_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    sleep_quality: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1-5
    sleep_awakenings: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sleep_difficulty: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    sleep_hours: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Mood
    mood_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1-5
    mood_level: Mapped[int | None] = mapped_column(Integer, nullable=True)  # -3..+3
    anxiety_level: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 0-3
    irritability_level: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 0-3

    # JSON strings for SQLite
    mood_tags_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    symptoms_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    suicidal_ideation_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Computed by the risk evaluator, never taken from the client.
    risk_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Activity and life context
    exercise_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    exercise_type: Mapped[str | None] = mapped_column(String, nullable=True)
    exercise_intensity: Mapped[str | None] = mapped_column(String, nullable=True)
    menstruation_stage: Mapped[str | None] = mapped_column(String, nullable=True)
    life_event_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    life_event_impact: Mapped[int | None] = mapped_column(Integer, nullable=True)  # -1..+1

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
