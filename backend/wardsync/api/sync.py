"""Per-patient sync and cohort preseed endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from wardsync.api.deps import get_services
from wardsync.schemas.sync import LastSyncResponse, PreseedRequest, PreseedResult, SyncResult
from wardsync.services.container import ServiceContainer
from wardsync.services.errors import FhirRequestError

router = APIRouter(prefix="/sync", tags=["Sync"])

Services = Annotated[ServiceContainer, Depends(get_services)]


@router.post("/patients/{patient_id}", response_model=SyncResult)
async def sync_patient(patient_id: str, services: Services):
    """Fetch, transform and store one patient. Failures come back in the body."""
    return await services.orchestrator.sync_patient(patient_id)


@router.get("/patients/{patient_id}/last-sync", response_model=LastSyncResponse)
async def last_sync(patient_id: str, services: Services):
    if not services.store.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Destination store not configured",
        )
    last_synced_at = await services.store.get_last_sync_time(patient_id)
    recent = await services.store.is_patient_synced_recent(
        patient_id, max(1, services.settings.sync_skip_recent_minutes)
    )
    return LastSyncResponse(
        patient_id=patient_id,
        last_synced_at=last_synced_at,
        synced_recently=recent,
    )


@router.post("/preseed", response_model=PreseedResult)
async def preseed(request: PreseedRequest, services: Services):
    """Sequentially sync a cohort into the destination store."""
    patient_ids = request.patient_ids
    if not patient_ids:
        try:
            resources = await services.client.fetch_patient_list(request.count)
        except FhirRequestError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
        patient_ids = [str(r["id"]) for r in resources if r.get("id")]
    return await services.orchestrator.preseed_cohort(patient_ids)
