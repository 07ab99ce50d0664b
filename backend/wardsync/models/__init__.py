from wardsync.models.audit import FhirRaw, PatientSnapshot
from wardsync.models.base import Base, TimestampMixin
from wardsync.models.clinical import Allergy, LabResult, Medication, NursingNote, Vital
from wardsync.models.patient import Patient

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Destination tables
    "Patient",
    "Allergy",
    "Medication",
    "LabResult",
    "Vital",
    "NursingNote",
    "FhirRaw",
    "PatientSnapshot",
]
