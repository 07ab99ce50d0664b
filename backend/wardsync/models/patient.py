from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from wardsync.models.base import Base, ProvenanceMixin, TimestampMixin


class Patient(Base, TimestampMixin, ProvenanceMixin):
    """Ward patient demographics with derived diagnosis and risk score."""

    __tablename__ = "patients"

    patient_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sex: Mapped[str] = mapped_column(String(1), nullable=False, comment="M|F|U")
    room: Mapped[str | None] = mapped_column(String(16), nullable=True)
    mrn: Mapped[str | None] = mapped_column(String(32), nullable=True)
    diagnosis: Mapped[str | None] = mapped_column(String(300), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    __table_args__ = (Index("ix_patients_risk_score", "risk_score"),)
