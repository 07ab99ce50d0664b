"""Raw audit copies and the append-only snapshot ledger."""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from wardsync.models.base import Base, JSONType


class FhirRaw(Base):
    """Verbatim source resource retained for traceability."""

    __tablename__ = "fhir_raw"

    raw_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.patient_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    raw_json: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class PatientSnapshot(Base):
    """Ledger entry written once per successful upsert."""

    __tablename__ = "patient_snapshots"

    snapshot_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    patient_id: Mapped[str] = mapped_column(
        ForeignKey("patients.patient_id", ondelete="CASCADE"),
        nullable=False,
    )
    snapshot_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    lookback_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    completeness_flags: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    resource_counts: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)

    __table_args__ = (
        Index("ix_patient_snapshots_patient_at", "patient_id", "snapshot_at"),
    )
