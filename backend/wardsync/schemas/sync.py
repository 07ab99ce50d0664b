"""Schemas for per-patient sync and cohort preseed results."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SyncResult(BaseModel):
    success: bool
    patient_id: str
    snapshot_id: str | None = None
    rows_written: int = 0
    completeness_flags: dict[str, Any] = Field(default_factory=dict)
    duration_ms: int = 0
    error: str | None = None


class PreseedRequest(BaseModel):
    patient_ids: list[str] | None = Field(
        default=None,
        description="Explicit ids to sync. Omit to sync the first `count` patients from the source.",
    )
    count: int = Field(default=50, ge=1, le=500)


class PreseedResult(BaseModel):
    total: int = 0
    synced: int = 0
    errors: int = 0
    skipped: bool = False


class LastSyncResponse(BaseModel):
    patient_id: str
    last_synced_at: datetime | None = None
    synced_recently: bool = False
