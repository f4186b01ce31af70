import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.clock import utcnow
from models.base import Base

CONSULTATION_DRAFT = "DRAFT"
CONSULTATION_FINALIZED = "FINALIZED"
CONSULTATION_CANCELLED = "CANCELLED"


class Consultation(Base):
    """
    Clinical encounter record.
    Editable only while DRAFT; FINALIZED and CANCELLED are terminal and immutable.
    """

    __tablename__ = "consultations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)
    doctor_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)

    date_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    modality: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, index=True, nullable=False, default=CONSULTATION_DRAFT)

    anamnesis: Mapped[str | None] = mapped_column(Text, nullable=True)
    diagnostic_hypothesis: Mapped[str | None] = mapped_column(Text, nullable=True)
    treatment_plan: Mapped[str | None] = mapped_column(Text, nullable=True)
    icd10_codes_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    signature_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # Credential used at signing time; kept so the hash can be re-verified later.
    signed_credential: Mapped[str | None] = mapped_column(String, nullable=True)

    cancelled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
