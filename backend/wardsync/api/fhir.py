"""Administrative access to the record source and its bundle cache."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from wardsync.api.deps import get_services
from wardsync.services.container import ServiceContainer
from wardsync.services.errors import FhirRequestError

router = APIRouter(prefix="/fhir", tags=["FHIR"])

Services = Annotated[ServiceContainer, Depends(get_services)]


@router.get("/patients")
async def list_patients(
    services: Services,
    count: int = Query(20, ge=1, le=500),
) -> list[dict[str, Any]]:
    try:
        return await services.client.fetch_patient_list(count)
    except FhirRequestError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


@router.get("/patients/{patient_id}/bundle")
async def patient_bundle(
    patient_id: str,
    services: Services,
    refresh: bool = Query(False),
) -> dict[str, Any]:
    """Merged searchset bundle for a patient; ``refresh`` bypasses the cache."""
    if refresh:
        await services.client.invalidate(patient_id)
    return await services.client.fetch_bundle(patient_id)


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cache(services: Services) -> None:
    await services.client.clear_cache()
