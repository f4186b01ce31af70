import uuid

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class Medication(Base):
    """Reference data. The prescription cross-validator reads it, never writes it."""

    __tablename__ = "medications"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String, index=True, nullable=False)
    active_ingredient: Mapped[str | None] = mapped_column(String, nullable=True)
    concentration: Mapped[str | None] = mapped_column(String, nullable=True)
    form: Mapped[str | None] = mapped_column(String, nullable=True)

    # ICD-10 codes this medication is indicated for, e.g. ["F32.1", "F33"]
    indication_codes_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    # Free tags, e.g. ["antibiotic", "maoi"]
    interaction_tags_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    is_controlled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
