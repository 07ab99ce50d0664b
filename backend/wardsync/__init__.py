"""WardSync: FHIR record sync pipeline and ward census service."""

__version__ = "0.1.0"
