"""FHIR record source access."""

from wardsync.services.fhir.client import FhirRecordClient
from wardsync.services.fhir.resources import RESOURCE_KINDS

__all__ = ["FhirRecordClient", "RESOURCE_KINDS"]
