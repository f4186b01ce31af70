from typing import Literal

from pydantic import BaseModel, Field

AlertStatusLiteral = Literal["PENDING", "VIEWED", "CONTACTED", "RESOLVED", "FALSE_POSITIVE"]


class AlertItem(BaseModel):
    id: str
    patient_id: str
    patient_name: str | None = None
    severity: str  # HIGH | MEDIUM
    trigger_source: str
    status: str
    resolution_notes: str | None = None
    contact_method: str | None = None
    created_at: str
    updated_at: str
    resolved_at: str | None = None


class AlertsResponse(BaseModel):
    alerts: list[AlertItem]


class AlertStatusUpdate(BaseModel):
    status: AlertStatusLiteral
    notes: str | None = None
    contact_method: str | None = Field(None, max_length=100)


class AlertStatsResponse(BaseModel):
    total: int
    pending: int
    high_pending: int
    medium_pending: int
    viewed: int
    contacted: int
    resolved: int
    false_positive: int
    sla_breached: int
