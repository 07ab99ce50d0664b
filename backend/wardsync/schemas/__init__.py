from wardsync.schemas.census import CohortSummary, LabSummary, PatientSummary, VitalsSummary
from wardsync.schemas.snapshot import (
    AllergyRow,
    LabRow,
    MedicationRow,
    NoteRow,
    PatientRow,
    RawResourceRow,
    Snapshot,
    VitalRow,
)
from wardsync.schemas.sync import LastSyncResponse, PreseedRequest, PreseedResult, SyncResult

__all__ = [
    # Snapshot rows
    "Snapshot",
    "PatientRow",
    "AllergyRow",
    "MedicationRow",
    "LabRow",
    "VitalRow",
    "NoteRow",
    "RawResourceRow",
    # Sync
    "SyncResult",
    "PreseedRequest",
    "PreseedResult",
    "LastSyncResponse",
    # Census
    "PatientSummary",
    "VitalsSummary",
    "LabSummary",
    "CohortSummary",
]
