from typing import Literal

from pydantic import BaseModel, Field

PrescriptionType = Literal["SIMPLES", "CONTROLADA", "ANTIMICROBIANA"]


class PrescriptionItemCreate(BaseModel):
    medication_id: str
    dosage: str = Field(..., min_length=3)
    quantity: str = Field(..., min_length=3)  # "1 caixa", "30 comprimidos"
    form: str | None = None
    duration: str | None = None
    instructions: str | None = None
    frequency: str | None = None


class FormalPrescriptionCreate(BaseModel):
    consultation_id: str
    patient_id: str
    type: PrescriptionType
    items: list[PrescriptionItemCreate] = Field(..., min_length=1)


class PrescriptionRevoke(BaseModel):
    # Length is checked by the service so the error carries the domain error code.
    revoked_reason: str


class PrescriptionItemResponse(BaseModel):
    position: int
    medication_id: str
    medication_name: str | None = None
    dosage: str
    quantity: str
    form: str | None = None
    duration: str | None = None
    instructions: str | None = None
    frequency: str | None = None


class FormalPrescriptionResponse(BaseModel):
    id: str
    consultation_id: str
    patient_id: str
    prescriber_id: str
    type: str
    is_valid: bool
    valid_until: str
    signature_hash: str | None = None
    signed_at: str | None = None
    revoked_at: str | None = None
    revoked_reason: str | None = None
    created_at: str
    items: list[PrescriptionItemResponse]


class FormalPrescriptionsResponse(BaseModel):
    patient_id: str
    prescriptions: list[FormalPrescriptionResponse]


class ActivePrescriptionItem(BaseModel):
    id: str
    medication_id: str
    medication_name: str | None = None
    dosage: str
    frequency: str
    form: str | None = None
    duration: str | None = None
    instructions: str | None = None
    start_date: str
    end_date: str | None = None
    source_prescription_id: str | None = None


class ActivePrescriptionsResponse(BaseModel):
    patient_id: str
    medications: list[ActivePrescriptionItem]


class MedicationItem(BaseModel):
    id: str
    name: str
    active_ingredient: str | None = None
    concentration: str | None = None
    form: str | None = None
    indication_codes: list[str]
    interaction_tags: list[str]
    is_controlled: bool


class MedicationsResponse(BaseModel):
    medications: list[MedicationItem]
