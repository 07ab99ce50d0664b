from datetime import timedelta

import pytest
from sqlalchemy import func, select

from factories import (
    NOW,
    allergy,
    bp_panel,
    bundle,
    condition,
    document,
    heart_rate,
    lab,
    medication_request,
    observation,
    patient,
)
from wardsync.models import (
    Allergy,
    FhirRaw,
    LabResult,
    Medication,
    NursingNote,
    Patient,
    PatientSnapshot,
    Vital,
)
from wardsync.services.errors import MissingPatientError, StoreUnavailableError, UpsertError
from wardsync.services.sync.store import SnapshotStore

ROW_MODELS = (Patient, Allergy, Medication, LabResult, Vital, NursingNote, FhirRaw)


def _full_bundle(patient_id: str, diagnosis: str = "Sepsis", potassium: float = 6.2):
    return bundle(
        patient(patient_id),
        condition(f"{patient_id}-c1", diagnosis),
        heart_rate(f"{patient_id}-hr", 118),
        bp_panel(f"{patient_id}-bp", 96, 58),
        lab(f"{patient_id}-k", "Potassium", potassium, "mmol/L", interpretation="HH"),
        lab(f"{patient_id}-cr", "Creatinine", 2.1, "mg/dL", interpretation="H"),
        medication_request(f"{patient_id}-m1", "Norepinephrine"),
        allergy(f"{patient_id}-a1", "Penicillin", reaction="Rash"),
        document(f"{patient_id}-n1", text="MAP soft overnight."),
    )


async def _count(session_maker, model) -> int:
    async with session_maker() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _counts(session_maker) -> dict[str, int]:
    return {model.__tablename__: await _count(session_maker, model) for model in ROW_MODELS}


@pytest.mark.anyio
async def test_upsert_twice_leaves_rows_unchanged(store, session_maker, transformer):
    snapshot = transformer.transform("p1", _full_bundle("p1"), 72)

    first = await store.upsert_snapshot(snapshot)
    counts_after_first = await _counts(session_maker)
    second = await store.upsert_snapshot(snapshot)

    assert await _counts(session_maker) == counts_after_first
    assert counts_after_first == {
        "patients": 1,
        "allergies": 1,
        "medications": 1,
        "lab_results": 2,
        "vitals": 1,
        "nursing_notes": 1,
        "fhir_raw": 9,
    }
    assert first.rows_written == second.rows_written == 7
    assert first.snapshot_id != second.snapshot_id
    assert first.snapshot_id.startswith("snap-")
    assert await _count(session_maker, PatientSnapshot) == 2


@pytest.mark.anyio
async def test_reordered_vitals_upsert_into_one_row(store, session_maker, transformer):
    taken = NOW - timedelta(hours=1)
    readings = [
        heart_rate("hr-1", 104, effective=taken),
        observation("sbp-1", "8480-6", "Systolic", value=131, effective=taken),
    ]

    forward = transformer.transform("p1", bundle(patient("p1"), *readings), 72)
    backward = transformer.transform("p1", bundle(patient("p1"), *reversed(readings)), 72)
    await store.upsert_snapshot(forward)
    await store.upsert_snapshot(backward)

    assert forward.vitals[0].vital_id == backward.vitals[0].vital_id
    assert await _count(session_maker, Vital) == 1


@pytest.mark.anyio
async def test_replayed_snapshot_updates_changed_values(store, session_maker, transformer):
    await store.upsert_snapshot(transformer.transform("p1", _full_bundle("p1"), 72))
    await store.upsert_snapshot(
        transformer.transform("p1", _full_bundle("p1", potassium=4.1), 72)
    )

    async with session_maker() as session:
        row = await session.get(LabResult, "p1-k")

    assert row.value == "4.1"
    assert row.value_numeric == 4.1
    assert await _count(session_maker, LabResult) == 2


@pytest.mark.anyio
async def test_duplicate_ids_within_snapshot_collapse(store, session_maker, transformer):
    resources = bundle(
        patient("p1"),
        lab("dup", "Lactate", 2.0, "mmol/L"),
        lab("dup", "Lactate", 4.5, "mmol/L"),
    )

    result = await store.upsert_snapshot(transformer.transform("p1", resources, 72))

    async with session_maker() as session:
        row = await session.get(LabResult, "dup")
    assert result.rows_written == 2
    assert row.value == "4.5"


@pytest.mark.anyio
async def test_ledger_records_flags_and_counts(store, session_maker, transformer):
    result = await store.upsert_snapshot(transformer.transform("p1", _full_bundle("p1"), 72))

    async with session_maker() as session:
        entry = await session.get(PatientSnapshot, result.snapshot_id)

    assert entry.patient_id == "p1"
    assert entry.lookback_hours == 72
    assert entry.completeness_flags["missing_critical_labs"] == ["lactate", "troponin"]
    assert entry.completeness_flags == result.completeness_flags
    assert entry.resource_counts == {
        "allergies": 1,
        "medications": 1,
        "labs": 2,
        "vitals": 1,
        "notes": 1,
        "raw": 9,
    }


@pytest.mark.anyio
async def test_snapshot_without_patient_is_rejected(store, session_maker, transformer):
    snapshot = transformer.transform("p1", bundle(heart_rate("hr", 80)), 72)

    with pytest.raises(MissingPatientError):
        await store.upsert_snapshot(snapshot)

    assert await _count(session_maker, Vital) == 0


@pytest.mark.anyio
async def test_last_sync_time_and_recent_check(store, transformer, clock):
    assert await store.get_last_sync_time("p1") is None
    assert await store.is_patient_synced_recent("p1") is False

    await store.upsert_snapshot(transformer.transform("p1", _full_bundle("p1"), 72))

    assert await store.get_last_sync_time("p1") == NOW
    assert await store.is_patient_synced_recent("p1") is True

    clock.advance(minutes=11)

    assert await store.is_patient_synced_recent("p1") is False
    assert await store.is_patient_synced_recent("p1", minutes_threshold=30) is True


@pytest.mark.anyio
async def test_failed_step_raises_with_step_name(store, session_maker, transformer, monkeypatch):
    original = SnapshotStore._upsert_rows

    async def _fail_on_labs(session, model, key, rows):
        if model is LabResult:
            raise RuntimeError("disk full")
        await original(session, model, key, rows)

    monkeypatch.setattr(store, "_upsert_rows", _fail_on_labs)

    with pytest.raises(UpsertError) as exc_info:
        await store.upsert_snapshot(transformer.transform("p1", _full_bundle("p1"), 72))

    assert exc_info.value.step == "labs"
    assert exc_info.value.patient_id == "p1"
    assert await _count(session_maker, Patient) == 1
    assert await _count(session_maker, Medication) == 1
    assert await _count(session_maker, LabResult) == 0
    assert await _count(session_maker, PatientSnapshot) == 0


@pytest.mark.anyio
async def test_rows_are_written_in_configured_batches(session_maker, transformer, clock, monkeypatch):
    store = SnapshotStore(session_maker, batch_sizes={"labs": 1}, now=clock)
    original = SnapshotStore._upsert_rows
    lab_batches = []

    async def _spy(session, model, key, rows):
        if model is LabResult:
            lab_batches.append(len(rows))
        await original(session, model, key, rows)

    monkeypatch.setattr(store, "_upsert_rows", _spy)

    await store.upsert_snapshot(transformer.transform("p1", _full_bundle("p1"), 72))

    assert lab_batches == [1, 1]
    assert await _count(session_maker, LabResult) == 2


@pytest.mark.anyio
async def test_load_census_orders_by_risk(store, transformer):
    low = transformer.transform("p1", _full_bundle("p1", diagnosis="Pneumonia"), 72)
    high = transformer.transform("p2", _full_bundle("p2"), 72)
    low.patient.risk_score = 0.5
    high.patient.risk_score = 0.9
    await store.upsert_snapshot(low)
    await store.upsert_snapshot(high)

    census = await store.load_census()

    assert [summary.id for summary in census] == ["p2", "p1"]
    top = census[0]
    assert top.diagnosis == "Sepsis"
    assert top.vitals.hr == 118
    assert top.vitals.bp_sys == 96
    assert [lab.flag for lab in top.labs] == ["critical", "high"]
    assert top.meds == ["Norepinephrine"]
    assert top.allergies == ["Penicillin"]
    assert top.notes == ["MAP soft overnight."]


@pytest.mark.anyio
async def test_patient_summary_lookup(store, transformer):
    await store.upsert_snapshot(transformer.transform("p1", _full_bundle("p1"), 72))

    summary = await store.get_patient_summary("p1")

    assert summary is not None
    assert summary.name == "Ana Rivera"
    assert await store.get_patient_summary("missing") is None


@pytest.mark.anyio
async def test_cohort_summary_aggregates(store, transformer):
    low = transformer.transform("p1", _full_bundle("p1", diagnosis="Pneumonia"), 72)
    high = transformer.transform("p2", _full_bundle("p2"), 72)
    low.patient.risk_score = 0.5
    high.patient.risk_score = 0.9
    await store.upsert_snapshot(low)
    await store.upsert_snapshot(high)

    cohort = await store.get_cohort_summary()

    assert cohort.total_patients == 2
    assert cohort.avg_risk_score == pytest.approx(0.7)
    assert cohort.high_risk_count == 1
    assert cohort.distinct_diagnoses == 2


@pytest.mark.anyio
async def test_availability(store):
    unconfigured = SnapshotStore(None)

    assert store.configured is True
    assert await store.is_available() is True
    assert unconfigured.configured is False
    assert await unconfigured.is_available() is False


@pytest.mark.anyio
async def test_unconfigured_store_refuses_writes(transformer):
    snapshot = transformer.transform("p1", _full_bundle("p1"), 72)

    with pytest.raises(StoreUnavailableError):
        await SnapshotStore(None).upsert_snapshot(snapshot)
