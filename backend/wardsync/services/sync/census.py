"""Cohort census: instant load from the store, otherwise a bounded live crawl."""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from wardsync.config import Settings
from wardsync.schemas.census import PatientSummary
from wardsync.services.fhir.client import FhirRecordClient
from wardsync.services.sync.orchestrator import SyncOrchestrator
from wardsync.services.sync.store import SnapshotStore
from wardsync.services.sync.summary import snapshot_to_summary
from wardsync.services.sync.transformer import SnapshotTransformer

logger = logging.getLogger("wardsync.census")

UpdateCallback = Callable[[PatientSummary], Any]


@dataclass
class CensusState:
    """The census currently served to clients."""

    patients: list[PatientSummary] = field(default_factory=list)
    built_at: datetime | None = None

    def replace(self, patients: Sequence[PatientSummary]) -> None:
        self.patients = list(patients)
        self.built_at = datetime.now(UTC)

    def merge_patient(self, summary: PatientSummary) -> None:
        """Replace the entry with the same id, or append it."""
        for index, existing in enumerate(self.patients):
            if existing.id == summary.id:
                self.patients[index] = summary
                return
        self.patients.append(summary)

    def copy(self) -> list[PatientSummary]:
        return [patient.model_copy(deep=True) for patient in self.patients]


class CensusBuilder:
    """Builds and serves the ward census.

    At most one crawl runs at a time; concurrent ``build_census`` callers
    await the same task and their ``on_update`` callbacks are subscribed
    to its progressive results.
    """

    def __init__(
        self,
        *,
        client: FhirRecordClient,
        transformer: SnapshotTransformer,
        store: SnapshotStore,
        orchestrator: SyncOrchestrator,
        state: CensusState | None = None,
        target_count: int = 50,
        min_store_size: int = 50,
        overfetch_multiplier: float = 10.0,
        batch_size: int = 10,
        batch_pause_seconds: float = 0.2,
        stale_diagnosis_labels: Sequence[str] = ("unknown", "no active conditions", "undocumented", ""),
        stale_threshold: float = 0.7,
        background_reseed: bool = True,
        lookback_hours: int = 72,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.transformer = transformer
        self.store = store
        self.orchestrator = orchestrator
        self.state = state or CensusState()
        self.target_count = target_count
        self.min_store_size = min_store_size
        self.overfetch_multiplier = overfetch_multiplier
        self.batch_size = max(1, batch_size)
        self.batch_pause_seconds = batch_pause_seconds
        self.stale_diagnosis_labels = [label.strip().lower() for label in stale_diagnosis_labels]
        self.stale_threshold = stale_threshold
        self.background_reseed = background_reseed
        self.lookback_hours = lookback_hours
        self._sleep = sleep
        self._build_task: asyncio.Task[list[PatientSummary]] | None = None
        self._subscribers: list[UpdateCallback] = []
        self._reseed_task: asyncio.Task[Any] | None = None
        self.crawl_count = 0

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        *,
        client: FhirRecordClient,
        transformer: SnapshotTransformer,
        store: SnapshotStore,
        orchestrator: SyncOrchestrator,
    ) -> "CensusBuilder":
        return cls(
            client=client,
            transformer=transformer,
            store=store,
            orchestrator=orchestrator,
            target_count=config.census_target_count,
            min_store_size=config.census_min_store_size,
            overfetch_multiplier=config.census_overfetch_multiplier,
            batch_size=config.census_batch_size,
            batch_pause_seconds=config.census_batch_pause_seconds,
            stale_diagnosis_labels=config.census_stale_diagnosis_labels,
            stale_threshold=config.census_stale_threshold,
            background_reseed=config.census_background_reseed,
            lookback_hours=config.sync_lookback_hours,
        )

    @property
    def building(self) -> bool:
        return self._build_task is not None and not self._build_task.done()

    async def get_census(
        self,
        force_refresh: bool = False,
        on_update: UpdateCallback | None = None,
    ) -> list[PatientSummary]:
        """Serve the census, preferring held state, then the store, then a live crawl."""
        if self.building:
            return await self.build_census(self.target_count, on_update)
        if self.state.patients and not force_refresh:
            return self.state.copy()

        if not force_refresh and self.store.configured:
            try:
                stored = await self.store.load_census()
            except Exception as exc:
                logger.warning("Census store load failed, falling back to live crawl: %s", exc)
                stored = []
            if self.is_store_census_usable(stored):
                logger.info("Census loaded from store (%d patients)", len(stored))
                self.state.replace(stored)
                return self.state.copy()

        census = await self.build_census(self.target_count, on_update)
        if census and self.background_reseed and await self.store.is_available():
            self._schedule_reseed([patient.id for patient in census])
        return census

    def is_store_census_usable(self, stored: Sequence[PatientSummary]) -> bool:
        """Reject small cohorts and cohorts dominated by placeholder diagnoses."""
        if len(stored) < self.min_store_size or not stored:
            return False
        stale = sum(1 for patient in stored if self._is_placeholder(patient.diagnosis))
        share = stale / len(stored)
        if share >= self.stale_threshold:
            logger.warning(
                "Stored census looks stale (%.0f%% placeholder diagnoses); rebuilding",
                share * 100,
            )
            return False
        return True

    def _is_placeholder(self, diagnosis: str | None) -> bool:
        normalized = (diagnosis or "").strip().lower()
        return any(
            normalized == label or (label and normalized.startswith(label))
            for label in self.stale_diagnosis_labels
        )

    async def build_census(
        self,
        target_count: int,
        on_update: UpdateCallback | None = None,
    ) -> list[PatientSummary]:
        if on_update is not None:
            self._subscribers.append(on_update)
        task = self._build_task
        if task is None or task.done():
            task = asyncio.create_task(self._crawl(target_count), name="census-crawl")
            self._build_task = task
        else:
            logger.info("Census build already in progress; joining it")
        try:
            result = await asyncio.shield(task)
        finally:
            if on_update is not None and on_update in self._subscribers:
                self._subscribers.remove(on_update)
        return [patient.model_copy(deep=True) for patient in result]

    async def _crawl(self, target_count: int) -> list[PatientSummary]:
        self.crawl_count += 1
        fetch_count = max(target_count, math.floor(target_count * self.overfetch_multiplier))
        try:
            resources = await self.client.fetch_patient_list(fetch_count)
        except Exception as exc:
            logger.error("Census crawl could not list patients: %s", exc)
            return self.state.copy()

        patient_ids = list(
            dict.fromkeys(str(r["id"]) for r in resources if r.get("id"))
        )
        logger.info(
            "Census crawl over %d candidate patients for target %d",
            len(patient_ids),
            target_count,
        )

        accumulated: list[PatientSummary] = []
        for start in range(0, len(patient_ids), self.batch_size):
            batch = patient_ids[start : start + self.batch_size]
            results = await asyncio.gather(*(self._build_summary(pid) for pid in batch))
            accumulated.extend(summary for summary in results if summary is not None)
            if len(accumulated) >= target_count:
                break
            if start + self.batch_size < len(patient_ids):
                await self._sleep(self.batch_pause_seconds)

        accumulated.sort(key=lambda patient: patient.risk_score, reverse=True)
        census = accumulated[:target_count]
        self.state.replace(census)
        logger.info("Census crawl complete with %d patients", len(census))
        return census

    async def _build_summary(self, patient_id: str) -> PatientSummary | None:
        try:
            bundle = await self.client.fetch_bundle(patient_id)
            snapshot = self.transformer.transform(patient_id, bundle, self.lookback_hours)
        except Exception as exc:
            logger.warning("Census skipping %s: %s", patient_id, exc)
            return None

        summary = snapshot_to_summary(snapshot)
        if summary is None:
            logger.info("Census dropping %s: no Patient resource", patient_id)
            return None

        self.state.merge_patient(summary)
        await self._emit(summary)
        return summary

    async def _emit(self, summary: PatientSummary) -> None:
        for callback in list(self._subscribers):
            try:
                outcome = callback(summary.model_copy(deep=True))
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Census update callback failed for %s", summary.id)

    def _schedule_reseed(self, patient_ids: list[str]) -> None:
        if self._reseed_task is not None and not self._reseed_task.done():
            return
        logger.info("Scheduling background reseed of %d patients", len(patient_ids))
        self._reseed_task = asyncio.create_task(
            self.orchestrator.preseed_cohort(patient_ids),
            name="census-reseed",
        )
        self._reseed_task.add_done_callback(_log_reseed_outcome)

    async def shutdown(self) -> None:
        for task in (self._build_task, self._reseed_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass


def _log_reseed_outcome(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background reseed failed: %s", exc)
