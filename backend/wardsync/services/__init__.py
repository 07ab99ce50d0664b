"""Sync pipeline services for WardSync.

This package avoids eager imports so that models and settings can be
imported without pulling in the HTTP client stack.
"""

from importlib import import_module

__all__ = [
    # Record source
    "FhirRecordClient",
    # Pipeline
    "SnapshotTransformer",
    "SnapshotStore",
    "SyncOrchestrator",
    "CensusBuilder",
    # Wiring
    "ServiceContainer",
    "build_services",
]

_LAZY_IMPORTS = {
    "FhirRecordClient": ("wardsync.services.fhir", "FhirRecordClient"),
    "SnapshotTransformer": ("wardsync.services.sync", "SnapshotTransformer"),
    "SnapshotStore": ("wardsync.services.sync", "SnapshotStore"),
    "SyncOrchestrator": ("wardsync.services.sync", "SyncOrchestrator"),
    "CensusBuilder": ("wardsync.services.sync", "CensusBuilder"),
    "ServiceContainer": ("wardsync.services.container", "ServiceContainer"),
    "build_services": ("wardsync.services.container", "build_services"),
}


def __getattr__(name: str):
    target = _LAZY_IMPORTS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)
