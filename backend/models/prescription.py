import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.clock import utcnow
from models.base import Base

PRESCRIPTION_SIMPLES = "SIMPLES"
PRESCRIPTION_CONTROLADA = "CONTROLADA"
PRESCRIPTION_ANTIMICROBIANA = "ANTIMICROBIANA"


class FormalPrescription(Base):
    """
    Signed medication order tied to exactly one FINALIZED consultation.
    Validity only moves valid -> revoked; rows are never deleted.
    """

    __tablename__ = "formal_prescriptions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    consultation_id: Mapped[str] = mapped_column(String, ForeignKey("consultations.id"), index=True, nullable=False)
    patient_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)
    prescriber_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)

    type: Mapped[str] = mapped_column(String, nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    valid_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    signature_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    signed_credential: Mapped[str | None] = mapped_column(String, nullable=True)

    revoked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    items: Mapped[list["PrescriptionItem"]] = relationship(
        back_populates="prescription", order_by="PrescriptionItem.position", cascade="all, delete-orphan"
    )


class PrescriptionItem(Base):
    __tablename__ = "prescription_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    prescription_id: Mapped[str] = mapped_column(
        String, ForeignKey("formal_prescriptions.id"), index=True, nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    medication_id: Mapped[str] = mapped_column(String, ForeignKey("medications.id"), nullable=False)

    dosage: Mapped[str] = mapped_column(String, nullable=False)
    quantity: Mapped[str] = mapped_column(String, nullable=False)
    form: Mapped[str | None] = mapped_column(String, nullable=True)
    duration: Mapped[str | None] = mapped_column(String, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    frequency: Mapped[str | None] = mapped_column(String, nullable=True)

    prescription: Mapped[FormalPrescription] = relationship(back_populates="items")


class ActivePrescription(Base):
    """
    Denormalized "currently taking" list per patient.
    Kept in sync by services.prescription_service when a formal prescription is committed.
    """

    __tablename__ = "active_prescriptions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=False)
    medication_id: Mapped[str] = mapped_column(String, ForeignKey("medications.id"), index=True, nullable=False)
    # Formal prescription this row was derived from; makes replays idempotent.
    source_prescription_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("formal_prescriptions.id"), nullable=True
    )

    dosage: Mapped[str] = mapped_column(String, nullable=False)
    frequency: Mapped[str] = mapped_column(String, nullable=False)
    form: Mapped[str | None] = mapped_column(String, nullable=True)
    duration: Mapped[str | None] = mapped_column(String, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
