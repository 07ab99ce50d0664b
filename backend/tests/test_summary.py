from datetime import timedelta

from factories import NOW
from wardsync.schemas.snapshot import (
    LabRow,
    MedicationRow,
    PatientRow,
    Snapshot,
    VitalRow,
)
from wardsync.services.sync.summary import (
    MAX_SUMMARY_LABS,
    celsius_to_fahrenheit,
    latest_vitals,
    snapshot_to_summary,
)


def _patient(**overrides) -> PatientRow:
    values = {"patient_id": "p1", "name": "Ana Rivera", "age": 66, "sex": "F", "risk_score": 0.72}
    values.update(overrides)
    return PatientRow(**values)


def test_celsius_readings_are_converted():
    assert celsius_to_fahrenheit(38.5) == 101.3
    assert celsius_to_fahrenheit(99.1) == 99.1


def test_latest_vitals_takes_newest_value_per_measure():
    rows = [
        VitalRow(patient_id="p1", vital_id="old", hr=80, rr=18, temp=37.0, effective_dt=NOW - timedelta(hours=4)),
        VitalRow(patient_id="p1", vital_id="new", hr=112, effective_dt=NOW - timedelta(hours=1)),
    ]

    summary = latest_vitals(rows)

    assert summary.hr == 112
    assert summary.rr == 18
    assert summary.temp == 98.6
    assert summary.timestamp == NOW - timedelta(hours=1)


def test_summary_requires_patient():
    assert snapshot_to_summary(Snapshot(patient_id="p1", lookback_hours=72)) is None


def test_summary_orders_labs_and_dedupes_meds():
    labs = [
        LabRow(patient_id="p1", lab_id="na", lab_name="Sodium", value="139", flag="normal", effective_dt=NOW),
        LabRow(patient_id="p1", lab_id="k", lab_name="Potassium", value="6.2", flag="critical", effective_dt=NOW - timedelta(hours=5)),
        LabRow(patient_id="p1", lab_id="wbc", lab_name="WBC", value="14", flag="high", effective_dt=NOW - timedelta(hours=1)),
    ]
    meds = [
        MedicationRow(patient_id="p1", medication_id="m1", medication="Heparin"),
        MedicationRow(patient_id="p1", medication_id="m2", medication="heparin "),
        MedicationRow(patient_id="p1", medication_id="m3", medication="Cefepime"),
    ]
    snapshot = Snapshot(
        patient_id="p1",
        lookback_hours=72,
        patient=_patient(),
        labs=labs,
        medications=meds,
    )

    summary = snapshot_to_summary(snapshot)

    assert [lab.name for lab in summary.labs] == ["Potassium", "WBC", "Sodium"]
    assert summary.meds == ["Heparin", "Cefepime"]
    assert summary.id == "p1"
    assert summary.risk_score == 0.72


def test_summary_caps_lab_count():
    labs = [
        LabRow(patient_id="p1", lab_id=f"l{i}", lab_name=f"Lab {i}", value=str(i))
        for i in range(MAX_SUMMARY_LABS + 5)
    ]
    snapshot = Snapshot(patient_id="p1", lookback_hours=72, patient=_patient(), labs=labs)

    assert len(snapshot_to_summary(snapshot).labs) == MAX_SUMMARY_LABS
