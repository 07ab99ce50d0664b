"""UI-ready census models."""

from datetime import datetime

from pydantic import BaseModel, Field


class VitalsSummary(BaseModel):
    hr: float | None = None
    bp_sys: float | None = None
    bp_dia: float | None = None
    rr: float | None = None
    temp: float | None = Field(default=None, description="Degrees Fahrenheit")
    spo2: float | None = None
    timestamp: datetime | None = None


class LabSummary(BaseModel):
    name: str
    value: str
    unit: str = ""
    flag: str = "normal"


class PatientSummary(BaseModel):
    id: str
    name: str
    age: int
    sex: str
    room: str | None = None
    mrn: str | None = None
    diagnosis: str
    summary: str
    vitals: VitalsSummary = Field(default_factory=VitalsSummary)
    labs: list[LabSummary] = Field(default_factory=list)
    meds: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    risk_score: float


class CohortSummary(BaseModel):
    total_patients: int = 0
    avg_risk_score: float | None = None
    high_risk_count: int = 0
    distinct_diagnoses: int = 0
