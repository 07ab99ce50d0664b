"""Shared API dependencies."""

from fastapi import Header, HTTPException, Request, status

from wardsync.config import settings
from wardsync.services.container import ServiceContainer


async def require_api_key(x_api_key: str | None = Header(None, alias="X-API-Key")):
    """Require API key when one is configured."""
    if not settings.api_key:
        return None
    if x_api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return None


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services are not initialized",
        )
    return services
