"""Exception types raised inside the sync pipeline."""


class WardSyncError(Exception):
    """Base class for pipeline errors."""


class FhirRequestError(WardSyncError):
    """The record source rejected or failed a request that must not degrade silently."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MissingPatientError(WardSyncError):
    """A snapshot has no Patient row and cannot be stored or displayed."""

    def __init__(self, patient_id: str) -> None:
        super().__init__(f"No Patient resource found for {patient_id}")
        self.patient_id = patient_id


class StoreUnavailableError(WardSyncError):
    """No destination store is configured or reachable."""


class UpsertError(WardSyncError):
    """A destination write failed part-way through a snapshot upsert."""

    def __init__(self, step: str, patient_id: str, cause: Exception) -> None:
        super().__init__(f"Upsert failed at step '{step}' for {patient_id}: {cause}")
        self.step = step
        self.patient_id = patient_id
        self.cause = cause
