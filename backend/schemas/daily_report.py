from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class DailyReportCreate(BaseModel):
    # risk_flag is computed server-side; unknown fields (including a client-sent risk_flag) are ignored.
    model_config = ConfigDict(extra="ignore")

    date: date

    sleep_bedtime: datetime | None = None
    sleep_onset_time: datetime | None = None
    sleep_wake_time: datetime | None = None
    sleep_quality: int | None = Field(None, ge=1, le=5)
    sleep_awakenings: int | None = Field(None, ge=0)
    sleep_difficulty: bool | None = None
    sleep_hours: float | None = Field(None, ge=0, le=24)

    mood_rating: int | None = Field(None, ge=1, le=5)
    mood_level: int | None = Field(None, ge=-3, le=3)
    anxiety_level: int | None = Field(None, ge=0, le=3)
    irritability_level: int | None = Field(None, ge=0, le=3)

    mood_tags: list[str] = Field(default_factory=list)
    symptoms: list[str] = Field(default_factory=list)
    notes: str | None = None
    suicidal_ideation_flag: bool = False

    exercise_minutes: int | None = Field(None, ge=0)
    exercise_type: str | None = None
    exercise_intensity: str | None = None
    menstruation_stage: str | None = None
    life_event_description: str | None = None
    life_event_impact: int | None = Field(None, ge=-1, le=1)


class DailyReportItem(BaseModel):
    id: str
    patient_id: str
    date: str
    mood_rating: int | None
    mood_level: int | None
    anxiety_level: int | None
    irritability_level: int | None
    sleep_quality: int | None
    sleep_hours: float | None
    mood_tags: list[str]
    symptoms: list[str]
    notes: str | None
    suicidal_ideation_flag: bool
    risk_flag: bool
    created_at: str


class DailyReportSubmitResponse(BaseModel):
    report: DailyReportItem
    alert_id: str | None = None
    trigger_reasons: list[str] = Field(default_factory=list)


class DailyReportsResponse(BaseModel):
    patient_id: str
    reports: list[DailyReportItem]
