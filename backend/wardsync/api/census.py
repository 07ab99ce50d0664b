"""Ward census endpoints."""

import asyncio
import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from wardsync.api.deps import get_services
from wardsync.schemas.census import CohortSummary, PatientSummary
from wardsync.services.container import ServiceContainer

logger = logging.getLogger("wardsync.api.census")

router = APIRouter(prefix="/census", tags=["Census"])

Services = Annotated[ServiceContainer, Depends(get_services)]

_DONE = object()


@router.get("", response_model=list[PatientSummary])
async def get_census(services: Services, force_refresh: bool = Query(False)):
    return await services.census.get_census(force_refresh=force_refresh)


@router.get("/stream")
async def stream_census(services: Services, force_refresh: bool = Query(False)):
    """NDJSON stream: one ``patient`` line per progressive update, then the final ``census``."""
    queue: asyncio.Queue = asyncio.Queue()

    async def on_update(patient: PatientSummary) -> None:
        await queue.put({"type": "patient", "patient": patient.model_dump(mode="json")})

    task = asyncio.create_task(
        services.census.get_census(force_refresh=force_refresh, on_update=on_update)
    )
    task.add_done_callback(lambda _task: queue.put_nowait(_DONE))

    async def body():
        while True:
            item = await queue.get()
            if item is _DONE:
                break
            yield json.dumps(item) + "\n"
        try:
            census = task.result()
        except Exception as exc:
            logger.exception("Census stream failed")
            yield json.dumps({"type": "error", "message": str(exc)}) + "\n"
            return
        yield json.dumps(
            {
                "type": "census",
                "patients": [patient.model_dump(mode="json") for patient in census],
            }
        ) + "\n"

    return StreamingResponse(body(), media_type="application/x-ndjson")


@router.get("/summary", response_model=CohortSummary)
async def cohort_summary(services: Services):
    if not services.store.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Destination store not configured",
        )
    return await services.store.get_cohort_summary()


@router.get("/patients/{patient_id}", response_model=PatientSummary)
async def get_patient(patient_id: str, services: Services):
    """Census entry for one patient, from held state or the store."""
    for patient in services.census.state.patients:
        if patient.id == patient_id:
            return patient
    if services.store.configured:
        summary = await services.store.get_patient_summary(patient_id)
        if summary is not None:
            return summary
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
