from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, StringConstraints

Modality = Literal["PRESENCIAL", "TELEMEDICINA"]
# Measured after stripping, the same way finalization measures it.
Anamnesis = Annotated[str, StringConstraints(strip_whitespace=True, min_length=10)]


class ConsultationCreate(BaseModel):
    patient_id: str
    date_time: datetime
    duration_minutes: int = Field(..., ge=15)
    modality: Modality
    anamnesis: Anamnesis | None = None
    diagnostic_hypothesis: str | None = None
    treatment_plan: str | None = None
    icd10_codes: list[str] = Field(default_factory=list)


class ConsultationUpdate(BaseModel):
    date_time: datetime | None = None
    duration_minutes: int | None = Field(None, ge=15)
    modality: Modality | None = None
    anamnesis: Anamnesis | None = None
    diagnostic_hypothesis: str | None = None
    treatment_plan: str | None = None
    icd10_codes: list[str] | None = None


class ConsultationCancel(BaseModel):
    # Length is checked by the service so the error carries the domain error code.
    cancelled_reason: str


class ConsultationItem(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    date_time: str
    duration_minutes: int
    modality: str
    status: str
    anamnesis: str | None = None
    diagnostic_hypothesis: str | None = None
    treatment_plan: str | None = None
    icd10_codes: list[str]
    signature_hash: str | None = None
    signed_at: str | None = None
    cancelled_reason: str | None = None
    cancelled_at: str | None = None


class ConsultationsResponse(BaseModel):
    consultations: list[ConsultationItem]


class SignatureCheckResponse(BaseModel):
    id: str
    signature_hash: str | None
    valid: bool
