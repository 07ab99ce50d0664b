"""Shape snapshots into UI-ready patient summaries."""

from __future__ import annotations

from datetime import UTC, datetime

from wardsync.schemas.census import LabSummary, PatientSummary, VitalsSummary
from wardsync.schemas.snapshot import LabRow, Snapshot, VitalRow

LAB_FLAG_ORDER = {"critical": 0, "high": 1, "low": 2, "normal": 3}
MAX_SUMMARY_LABS = 15
_EPOCH = datetime.min.replace(tzinfo=UTC)


def celsius_to_fahrenheit(value: float) -> float:
    """Convert readings that look like Celsius; larger values pass through."""
    if value < 50:
        return round(value * 9 / 5 + 32, 1)
    return value


def _newest_first(rows: list[VitalRow] | list[LabRow]) -> list:
    return sorted(rows, key=lambda row: row.effective_dt or _EPOCH, reverse=True)


def latest_vitals(vitals: list[VitalRow]) -> VitalsSummary:
    """Most recent non-null value of each measure."""
    summary = VitalsSummary()
    for row in _newest_first(vitals):
        for field in ("hr", "bp_sys", "bp_dia", "rr", "temp", "spo2"):
            value = getattr(row, field)
            if value is None or getattr(summary, field) is not None:
                continue
            setattr(summary, field, celsius_to_fahrenheit(value) if field == "temp" else value)
        if summary.timestamp is None and row.has_measurement():
            summary.timestamp = row.effective_dt
    return summary


def snapshot_to_summary(snapshot: Snapshot) -> PatientSummary | None:
    """Map a snapshot to the census model, or None when it has no patient."""
    patient = snapshot.patient
    if patient is None:
        return None

    labs = sorted(
        _newest_first(snapshot.labs),
        key=lambda lab: LAB_FLAG_ORDER.get(lab.flag, LAB_FLAG_ORDER["normal"]),
    )

    meds: list[str] = []
    seen: set[str] = set()
    for medication in snapshot.medications:
        key = (medication.medication or "").strip().lower()
        if key and key not in seen:
            seen.add(key)
            meds.append(medication.medication)

    return PatientSummary(
        id=patient.patient_id,
        name=patient.name,
        age=patient.age,
        sex=patient.sex,
        room=patient.room,
        mrn=patient.mrn,
        diagnosis=patient.diagnosis or "Unknown",
        summary=patient.summary or "",
        vitals=latest_vitals(snapshot.vitals),
        labs=[
            LabSummary(
                name=lab.lab_name,
                value=lab.value or "",
                unit=lab.unit or "",
                flag=lab.flag,
            )
            for lab in labs[:MAX_SUMMARY_LABS]
        ],
        meds=meds,
        allergies=[allergy.allergen for allergy in snapshot.allergies],
        notes=[note.note_text for note in snapshot.notes],
        risk_score=patient.risk_score,
    )
