"""Declarative base and shared column mixins."""

from datetime import datetime
from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class ProvenanceMixin:
    """Trace fields linking a destination row back to its source resource."""

    fhir_resource_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    fhir_resource_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    fhir_last_updated: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    source_system: Mapped[str | None] = mapped_column(String(64), nullable=True)
