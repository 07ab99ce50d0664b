"""Per-patient sync pipeline: fetch, transform, then upsert when a destination is reachable."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from wardsync.schemas.sync import PreseedResult, SyncResult
from wardsync.services.errors import MissingPatientError
from wardsync.services.fhir.client import FhirRecordClient
from wardsync.services.sync.completeness import build_completeness_flags
from wardsync.services.sync.store import SnapshotStore
from wardsync.services.sync.transformer import SnapshotTransformer

logger = logging.getLogger("wardsync.sync")

LOCAL_ONLY_NOTE = "Destination store not configured or unreachable; snapshot kept local only"


class SyncOrchestrator:
    """Coordinates one patient's sync and sequential cohort preseeding.

    Failures never escape ``sync_patient``; they come back as a
    ``SyncResult`` with ``success=False`` and the error message.
    """

    def __init__(
        self,
        *,
        client: FhirRecordClient,
        transformer: SnapshotTransformer,
        store: SnapshotStore,
        lookback_hours: int = 72,
        skip_recent_minutes: int = 10,
    ) -> None:
        self.client = client
        self.transformer = transformer
        self.store = store
        self.lookback_hours = lookback_hours
        self.skip_recent_minutes = skip_recent_minutes
        self._preseed_lock = asyncio.Lock()

    @property
    def preseed_running(self) -> bool:
        return self._preseed_lock.locked()

    async def sync_patient(self, patient_id: str) -> SyncResult:
        started = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - started) * 1000)

        try:
            reachable = await self.store.is_available()
            if (
                reachable
                and self.skip_recent_minutes > 0
                and await self.store.is_patient_synced_recent(
                    patient_id, self.skip_recent_minutes
                )
            ):
                logger.info("Skipping %s; synced within %d minutes", patient_id, self.skip_recent_minutes)
                return SyncResult(
                    success=True,
                    patient_id=patient_id,
                    snapshot_id="cached",
                    duration_ms=elapsed_ms(),
                )

            bundle = await self.client.fetch_bundle(patient_id)
            snapshot = self.transformer.transform(patient_id, bundle, self.lookback_hours)
            if snapshot.patient is None:
                raise MissingPatientError(patient_id)

            if not reachable:
                logger.info("Destination unavailable; %s synced local-only", patient_id)
                return SyncResult(
                    success=True,
                    patient_id=patient_id,
                    completeness_flags=build_completeness_flags(
                        snapshot, self.store.critical_lab_names
                    ),
                    duration_ms=elapsed_ms(),
                    error=LOCAL_ONLY_NOTE,
                )

            upserted = await self.store.upsert_snapshot(snapshot)
        except Exception as exc:
            logger.error("Sync failed for %s: %s", patient_id, exc)
            return SyncResult(
                success=False,
                patient_id=patient_id,
                duration_ms=elapsed_ms(),
                error=str(exc),
            )

        return SyncResult(
            success=True,
            patient_id=patient_id,
            snapshot_id=upserted.snapshot_id,
            rows_written=upserted.rows_written,
            completeness_flags=upserted.completeness_flags,
            duration_ms=elapsed_ms(),
        )

    async def preseed_cohort(self, patient_ids: Sequence[str]) -> PreseedResult:
        """Sync patients one at a time; a second concurrent trigger is ignored."""
        ids = list(dict.fromkeys(patient_ids))
        if self._preseed_lock.locked():
            logger.info("Preseed already running; ignoring request for %d patients", len(ids))
            return PreseedResult(total=len(ids), skipped=True)

        async with self._preseed_lock:
            result = PreseedResult(total=len(ids))
            logger.info("Preseeding %d patients", len(ids))
            for patient_id in ids:
                outcome = await self.sync_patient(patient_id)
                if outcome.success:
                    result.synced += 1
                else:
                    result.errors += 1
            logger.info(
                "Preseed complete: %d synced, %d errors of %d",
                result.synced,
                result.errors,
                result.total,
            )
            return result
