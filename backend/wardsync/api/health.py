from typing import Annotated

from fastapi import APIRouter, Depends

from wardsync.api.deps import get_services
from wardsync.services.container import ServiceContainer

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {"status": "healthy", "service": "wardsync-api"}


@router.get("/")
async def root():
    """Root endpoint with API information."""
    return {"message": "Welcome to WardSync API", "docs": "/docs", "health": "/health"}


@router.get("/health/store")
async def store_health(services: Annotated[ServiceContainer, Depends(get_services)]):
    """Report whether the destination store is configured and reachable."""
    return {
        "configured": services.store.configured,
        "reachable": await services.store.is_available(),
    }
