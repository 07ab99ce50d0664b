"""Per-patient clinical row tables keyed by the source resource id."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from wardsync.models.base import Base, ProvenanceMixin, TimestampMixin


def _patient_fk() -> Mapped[str]:
    return mapped_column(
        ForeignKey("patients.patient_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class Allergy(Base, TimestampMixin, ProvenanceMixin):
    __tablename__ = "allergies"

    allergy_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    patient_id: Mapped[str] = _patient_fk()
    allergen: Mapped[str] = mapped_column(String(300), nullable=False)
    reaction: Mapped[str | None] = mapped_column(String(300), nullable=True)
    severity: Mapped[str | None] = mapped_column(String(32), nullable=True)


class Medication(Base, TimestampMixin, ProvenanceMixin):
    __tablename__ = "medications"

    medication_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    patient_id: Mapped[str] = _patient_fk()
    medication: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    dosage: Mapped[str | None] = mapped_column(String(200), nullable=True)
    route: Mapped[str | None] = mapped_column(String(100), nullable=True)
    frequency: Mapped[str | None] = mapped_column(String(100), nullable=True)


class LabResult(Base, TimestampMixin, ProvenanceMixin):
    __tablename__ = "lab_results"

    lab_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    patient_id: Mapped[str] = _patient_fk()
    lab_name: Mapped[str] = mapped_column(String(300), nullable=False)
    value: Mapped[str | None] = mapped_column(String(200), nullable=True)
    value_numeric: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    flag: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="normal",
        comment="normal|high|low|critical",
    )
    effective_dt: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_lab_results_patient_effective", "patient_id", "effective_dt"),
    )


class Vital(Base, TimestampMixin, ProvenanceMixin):
    """One grouped vitals reading per rounded minute."""

    __tablename__ = "vitals"

    vital_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    patient_id: Mapped[str] = _patient_fk()
    hr: Mapped[float | None] = mapped_column(Float, nullable=True)
    bp_sys: Mapped[float | None] = mapped_column(Float, nullable=True)
    bp_dia: Mapped[float | None] = mapped_column(Float, nullable=True)
    rr: Mapped[float | None] = mapped_column(Float, nullable=True)
    temp: Mapped[float | None] = mapped_column(Float, nullable=True)
    spo2: Mapped[float | None] = mapped_column(Float, nullable=True)
    effective_dt: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_vitals_patient_effective", "patient_id", "effective_dt"),
    )


class NursingNote(Base, TimestampMixin, ProvenanceMixin):
    __tablename__ = "nursing_notes"

    note_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    patient_id: Mapped[str] = _patient_fk()
    note_text: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str | None] = mapped_column(String(200), nullable=True)
    note_dt: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
