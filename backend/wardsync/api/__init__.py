"""API Routes for WardSync."""

from wardsync.api import census, fhir, health, sync

__all__ = [
    "census",
    "fhir",
    "health",
    "sync",
]
