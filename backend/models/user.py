import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from core.clock import utcnow
from models.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)  # "patient" | "clinician"
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)

    # Patients only: the assigned clinician. Alerts and report events are routed to this user.
    clinician_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), index=True, nullable=True)

    # Clinicians only: professional registry number, used as the signing credential.
    crm: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
