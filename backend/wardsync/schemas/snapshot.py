"""Normalized, destination-ready rows produced from one FHIR bundle."""

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _assume_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


# Stores without timezone support hand back naive values.
UtcDatetime = Annotated[datetime, AfterValidator(_assume_utc)]


class ProvenanceFields(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    patient_id: str
    fhir_resource_type: str | None = None
    fhir_resource_id: str | None = None
    fhir_last_updated: UtcDatetime | None = None
    source_system: str | None = None


class PatientRow(ProvenanceFields):
    fhir_resource_type: str | None = "Patient"
    name: str
    age: int = 0
    sex: str = Field(default="U", pattern="^(M|F|U)$")
    room: str | None = None
    mrn: str | None = None
    diagnosis: str | None = "Unknown"
    summary: str | None = ""
    risk_score: float = 0.0


class AllergyRow(ProvenanceFields):
    fhir_resource_type: str | None = "AllergyIntolerance"
    allergy_id: str
    allergen: str
    reaction: str | None = ""
    severity: str | None = "unknown"


class MedicationRow(ProvenanceFields):
    fhir_resource_type: str | None = "MedicationRequest"
    medication_id: str
    medication: str
    status: str | None = "active"
    dosage: str | None = ""
    route: str | None = ""
    frequency: str | None = ""


class LabRow(ProvenanceFields):
    fhir_resource_type: str | None = "Observation"
    lab_id: str
    lab_name: str
    value: str | None = ""
    value_numeric: float | None = None
    unit: str | None = ""
    flag: str = Field(default="normal", pattern="^(normal|high|low|critical)$")
    effective_dt: UtcDatetime | None = None


class VitalRow(ProvenanceFields):
    fhir_resource_type: str | None = "Observation"
    vital_id: str
    hr: float | None = None
    bp_sys: float | None = None
    bp_dia: float | None = None
    rr: float | None = None
    temp: float | None = None
    spo2: float | None = None
    effective_dt: UtcDatetime | None = None

    def has_measurement(self) -> bool:
        return any(
            value is not None
            for value in (self.hr, self.bp_sys, self.bp_dia, self.rr, self.temp, self.spo2)
        )


class NoteRow(ProvenanceFields):
    fhir_resource_type: str | None = "DocumentReference"
    note_id: str
    note_text: str
    author: str | None = "Unknown"
    note_dt: UtcDatetime | None = None


class RawResourceRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    raw_id: str
    patient_id: str
    resource_type: str
    resource_id: str | None = None
    raw_json: dict[str, Any]


class Snapshot(BaseModel):
    """One patient's bundle flattened into row sets plus raw audit copies."""

    patient_id: str
    lookback_hours: int
    patient: PatientRow | None = None
    allergies: list[AllergyRow] = Field(default_factory=list)
    medications: list[MedicationRow] = Field(default_factory=list)
    labs: list[LabRow] = Field(default_factory=list)
    vitals: list[VitalRow] = Field(default_factory=list)
    notes: list[NoteRow] = Field(default_factory=list)
    raw_resources: list[RawResourceRow] = Field(default_factory=list)

    def resource_counts(self) -> dict[str, int]:
        return {
            "allergies": len(self.allergies),
            "medications": len(self.medications),
            "labs": len(self.labs),
            "vitals": len(self.vitals),
            "notes": len(self.notes),
            "raw": len(self.raw_resources),
        }
