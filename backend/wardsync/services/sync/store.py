"""Destination store: idempotent snapshot upserts and cohort reads."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import case, func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from wardsync.config import Settings
from wardsync.models import (
    Allergy,
    Base,
    FhirRaw,
    LabResult,
    Medication,
    NursingNote,
    Patient,
    PatientSnapshot,
    Vital,
)
from wardsync.schemas.census import CohortSummary, PatientSummary
from wardsync.schemas.snapshot import (
    AllergyRow,
    LabRow,
    MedicationRow,
    NoteRow,
    PatientRow,
    Snapshot,
    VitalRow,
)
from wardsync.services.errors import MissingPatientError, StoreUnavailableError, UpsertError
from wardsync.services.fhir.resources import coerce_datetime
from wardsync.services.sync.completeness import (
    DEFAULT_CRITICAL_LABS,
    build_completeness_flags,
)
from wardsync.services.sync.summary import snapshot_to_summary

logger = logging.getLogger(__name__)

HIGH_RISK_THRESHOLD = 0.8
CENSUS_LABS_PER_PATIENT = 5
CENSUS_NOTES_PER_PATIENT = 3

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}

# (step, snapshot attribute, model, key column), written in this order after the patient row.
_ROW_STEPS: tuple[tuple[str, str, type[Base], str], ...] = (
    ("allergies", "allergies", Allergy, "allergy_id"),
    ("medications", "medications", Medication, "medication_id"),
    ("labs", "labs", LabResult, "lab_id"),
    ("vitals", "vitals", Vital, "vital_id"),
    ("notes", "notes", NursingNote, "note_id"),
)

DEFAULT_BATCH_SIZES = {
    "allergies": 40,
    "medications": 40,
    "labs": 40,
    "vitals": 40,
    "notes": 40,
    "raw": 20,
}


@dataclass
class UpsertResult:
    """Outcome of one snapshot upsert."""

    snapshot_id: str
    rows_written: int
    completeness_flags: dict[str, Any] = field(default_factory=dict)


def _chunks(rows: Sequence[dict[str, Any]], size: int) -> Iterator[Sequence[dict[str, Any]]]:
    step = max(1, size)
    for start in range(0, len(rows), step):
        yield rows[start : start + step]


def _dedupe(rows: list[dict[str, Any]], key: str) -> list[dict[str, Any]]:
    """Collapse rows sharing an id; the last occurrence wins."""
    by_key: dict[Any, dict[str, Any]] = {}
    for row in rows:
        by_key[row[key]] = row
    return list(by_key.values())


class SnapshotStore:
    """Writes snapshots into the destination tables and reads the census back.

    Every row write is an ``INSERT ... ON CONFLICT (id) DO UPDATE`` keyed by
    the row's stable id, so replaying a snapshot converges to the same
    stored state. Each step commits on its own; a failure stops the
    remaining steps and leaves earlier writes in place.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None,
        *,
        batch_sizes: dict[str, int] | None = None,
        critical_lab_names: Sequence[str] = DEFAULT_CRITICAL_LABS,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_maker = session_maker
        self.batch_sizes = {**DEFAULT_BATCH_SIZES, **(batch_sizes or {})}
        self.critical_lab_names = list(critical_lab_names)
        self._now = now or (lambda: datetime.now(UTC))

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        session_maker: async_sessionmaker[AsyncSession] | None,
    ) -> "SnapshotStore":
        return cls(
            session_maker,
            batch_sizes={
                "allergies": config.upsert_batch_size_allergies,
                "medications": config.upsert_batch_size_medications,
                "labs": config.upsert_batch_size_labs,
                "vitals": config.upsert_batch_size_vitals,
                "notes": config.upsert_batch_size_notes,
                "raw": config.upsert_batch_size_raw,
            },
            critical_lab_names=config.critical_lab_names,
        )

    @property
    def configured(self) -> bool:
        return self._session_maker is not None

    def _session(self) -> AsyncSession:
        if self._session_maker is None:
            raise StoreUnavailableError("No destination store configured")
        return self._session_maker()

    async def is_available(self) -> bool:
        """True when a destination is configured and answers a trivial query."""
        if self._session_maker is None:
            return False
        try:
            async with self._session() as session:
                await session.execute(text("SELECT 1"))
        except Exception as exc:
            logger.warning("Destination store unreachable: %s", exc)
            return False
        return True

    async def upsert_snapshot(self, snapshot: Snapshot) -> UpsertResult:
        if snapshot.patient is None:
            raise MissingPatientError(snapshot.patient_id)

        patient_id = snapshot.patient_id
        rows_written = 0
        async with self._session() as session:
            step = "patient"
            try:
                await self._upsert_rows(
                    session, Patient, "patient_id", [snapshot.patient.model_dump()]
                )
                await session.commit()
                rows_written += 1

                for step, attribute, model, key in _ROW_STEPS:
                    rows = _dedupe(
                        [row.model_dump() for row in getattr(snapshot, attribute)], key
                    )
                    for batch in _chunks(rows, self.batch_sizes[step]):
                        await self._upsert_rows(session, model, key, batch)
                        await session.commit()
                        rows_written += len(batch)

                step = "raw"
                raw_rows = _dedupe(
                    [row.model_dump() for row in snapshot.raw_resources], "raw_id"
                )
                for batch in _chunks(raw_rows, self.batch_sizes["raw"]):
                    await self._upsert_rows(session, FhirRaw, "raw_id", batch)
                    await session.commit()

                step = "ledger"
                flags = build_completeness_flags(snapshot, self.critical_lab_names)
                snapshot_id = f"snap-{uuid.uuid4().hex}"
                session.add(
                    PatientSnapshot(
                        snapshot_id=snapshot_id,
                        patient_id=patient_id,
                        snapshot_at=self._now(),
                        lookback_hours=snapshot.lookback_hours,
                        completeness_flags=flags,
                        resource_counts=snapshot.resource_counts(),
                    )
                )
                await session.commit()
            except Exception as exc:
                await session.rollback()
                logger.error(
                    "Upsert for %s stopped at step %s after %d rows: %s",
                    patient_id,
                    step,
                    rows_written,
                    exc,
                )
                raise UpsertError(step, patient_id, exc) from exc

        logger.info(
            "Upserted snapshot %s for %s (%d rows)", snapshot_id, patient_id, rows_written
        )
        return UpsertResult(
            snapshot_id=snapshot_id,
            rows_written=rows_written,
            completeness_flags=flags,
        )

    @staticmethod
    async def _upsert_rows(
        session: AsyncSession,
        model: type[Base],
        key: str,
        rows: Sequence[dict[str, Any]],
    ) -> None:
        if not rows:
            return
        dialect = session.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise StoreUnavailableError(f"Unsupported destination dialect: {dialect}")
        stmt = insert(model).values(list(rows))
        updates = {column: stmt.excluded[column] for column in rows[0] if column != key}
        if "updated_at" in model.__table__.columns:
            updates["updated_at"] = func.now()
        await session.execute(
            stmt.on_conflict_do_update(index_elements=[key], set_=updates)
        )

    async def get_last_sync_time(self, patient_id: str) -> datetime | None:
        async with self._session() as session:
            value = await session.scalar(
                select(func.max(PatientSnapshot.snapshot_at)).where(
                    PatientSnapshot.patient_id == patient_id
                )
            )
        return coerce_datetime(value)

    async def is_patient_synced_recent(
        self,
        patient_id: str,
        minutes_threshold: int = 10,
    ) -> bool:
        last_synced = await self.get_last_sync_time(patient_id)
        if last_synced is None:
            return False
        return self._now() - last_synced < timedelta(minutes=minutes_threshold)

    async def load_census(self) -> list[PatientSummary]:
        """Stored cohort as summaries, highest risk first."""
        return await self._load_summaries()

    async def get_patient_summary(self, patient_id: str) -> PatientSummary | None:
        summaries = await self._load_summaries(patient_id)
        return summaries[0] if summaries else None

    async def get_cohort_summary(self) -> CohortSummary:
        async with self._session() as session:
            row = (
                await session.execute(
                    select(
                        func.count(Patient.patient_id),
                        func.avg(Patient.risk_score),
                        func.sum(case((Patient.risk_score > HIGH_RISK_THRESHOLD, 1), else_=0)),
                        func.count(func.distinct(Patient.diagnosis)),
                    )
                )
            ).one()
        total, avg_risk, high_risk, diagnoses = row
        return CohortSummary(
            total_patients=int(total or 0),
            avg_risk_score=round(float(avg_risk), 3) if avg_risk is not None else None,
            high_risk_count=int(high_risk or 0),
            distinct_diagnoses=int(diagnoses or 0),
        )

    async def _load_summaries(self, patient_id: str | None = None) -> list[PatientSummary]:
        async with self._session() as session:
            patient_query = select(Patient).order_by(
                Patient.risk_score.desc(), Patient.patient_id
            )
            if patient_id is not None:
                patient_query = patient_query.where(Patient.patient_id == patient_id)
            patients = list((await session.execute(patient_query)).scalars().all())
            if not patients:
                return []

            vitals = await self._ranked(session, Vital, Vital.effective_dt, 1, patient_id)
            labs = await self._ranked(
                session, LabResult, LabResult.effective_dt, CENSUS_LABS_PER_PATIENT, patient_id
            )
            notes = await self._ranked(
                session, NursingNote, NursingNote.note_dt, CENSUS_NOTES_PER_PATIENT, patient_id
            )
            medications = await self._all_for(session, Medication, patient_id)
            allergies = await self._all_for(session, Allergy, patient_id)

        summaries: list[PatientSummary] = []
        for patient in patients:
            pid = patient.patient_id
            snapshot = Snapshot(
                patient_id=pid,
                lookback_hours=0,
                patient=PatientRow.model_validate(patient),
                allergies=[AllergyRow.model_validate(r) for r in allergies.get(pid, [])],
                medications=[MedicationRow.model_validate(r) for r in medications.get(pid, [])],
                labs=[LabRow.model_validate(r) for r in labs.get(pid, [])],
                vitals=[VitalRow.model_validate(r) for r in vitals.get(pid, [])],
                notes=[NoteRow.model_validate(r) for r in notes.get(pid, [])],
            )
            summary = snapshot_to_summary(snapshot)
            if summary is not None:
                summaries.append(summary)
        return summaries

    @staticmethod
    async def _ranked(
        session: AsyncSession,
        model: type[Base],
        order_column,
        limit: int,
        patient_id: str | None,
    ) -> dict[str, list[Any]]:
        """Newest ``limit`` rows per patient using a row_number window."""
        rank = (
            func.row_number()
            .over(partition_by=model.patient_id, order_by=order_column.desc().nullslast())
            .label("row_rank")
        )
        inner = select(model, rank)
        if patient_id is not None:
            inner = inner.where(model.patient_id == patient_id)
        ranked = inner.subquery()
        entity = aliased(model, ranked)
        rows = await session.execute(
            select(entity).where(ranked.c.row_rank <= limit).order_by(ranked.c.row_rank)
        )
        grouped: dict[str, list[Any]] = {}
        for row in rows.scalars().all():
            grouped.setdefault(row.patient_id, []).append(row)
        return grouped

    @staticmethod
    async def _all_for(
        session: AsyncSession,
        model: type[Base],
        patient_id: str | None,
    ) -> dict[str, list[Any]]:
        query = select(model)
        if patient_id is not None:
            query = query.where(model.patient_id == patient_id)
        grouped: dict[str, list[Any]] = {}
        for row in (await session.execute(query)).scalars().all():
            grouped.setdefault(row.patient_id, []).append(row)
        return grouped
