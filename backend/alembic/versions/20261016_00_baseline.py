"""Baseline destination schema: clinical row tables, raw audit and snapshot ledger.

Revision ID: 20261016_00
Revises:
Create Date: 2026-10-16
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "20261016_00"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

CLINICAL_TABLES = ("allergies", "medications", "lab_results", "vitals", "nursing_notes")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def _provenance() -> list[sa.Column]:
    return [
        sa.Column("fhir_resource_type", sa.String(length=64), nullable=True),
        sa.Column("fhir_resource_id", sa.String(length=128), nullable=True),
        sa.Column("fhir_last_updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_system", sa.String(length=64), nullable=True),
    ]


def _patient_ref() -> list[sa.SchemaItem]:
    return [
        sa.Column("patient_id", sa.String(length=128), nullable=False),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.patient_id"], ondelete="CASCADE"),
    ]


def upgrade() -> None:
    op.create_table(
        "patients",
        sa.Column("patient_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("age", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sex", sa.String(length=1), nullable=False, comment="M|F|U"),
        sa.Column("room", sa.String(length=16), nullable=True),
        sa.Column("mrn", sa.String(length=32), nullable=True),
        sa.Column("diagnosis", sa.String(length=300), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("risk_score", sa.Float(), nullable=False, server_default="0"),
        *_provenance(),
        *_timestamps(),
        sa.PrimaryKeyConstraint("patient_id"),
    )
    op.create_index("ix_patients_risk_score", "patients", ["risk_score"], unique=False)

    op.create_table(
        "allergies",
        sa.Column("allergy_id", sa.String(length=128), nullable=False),
        *_patient_ref(),
        sa.Column("allergen", sa.String(length=300), nullable=False),
        sa.Column("reaction", sa.String(length=300), nullable=True),
        sa.Column("severity", sa.String(length=32), nullable=True),
        *_provenance(),
        *_timestamps(),
        sa.PrimaryKeyConstraint("allergy_id"),
    )
    op.create_table(
        "medications",
        sa.Column("medication_id", sa.String(length=128), nullable=False),
        *_patient_ref(),
        sa.Column("medication", sa.String(length=300), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=True),
        sa.Column("dosage", sa.String(length=200), nullable=True),
        sa.Column("route", sa.String(length=100), nullable=True),
        sa.Column("frequency", sa.String(length=100), nullable=True),
        *_provenance(),
        *_timestamps(),
        sa.PrimaryKeyConstraint("medication_id"),
    )
    op.create_table(
        "lab_results",
        sa.Column("lab_id", sa.String(length=128), nullable=False),
        *_patient_ref(),
        sa.Column("lab_name", sa.String(length=300), nullable=False),
        sa.Column("value", sa.String(length=200), nullable=True),
        sa.Column("value_numeric", sa.Float(), nullable=True),
        sa.Column("unit", sa.String(length=50), nullable=True),
        sa.Column(
            "flag",
            sa.String(length=16),
            nullable=False,
            server_default="normal",
            comment="normal|high|low|critical",
        ),
        sa.Column("effective_dt", sa.DateTime(timezone=True), nullable=True),
        *_provenance(),
        *_timestamps(),
        sa.PrimaryKeyConstraint("lab_id"),
    )
    op.create_index(
        "ix_lab_results_patient_effective",
        "lab_results",
        ["patient_id", "effective_dt"],
        unique=False,
    )
    op.create_table(
        "vitals",
        sa.Column("vital_id", sa.String(length=128), nullable=False),
        *_patient_ref(),
        sa.Column("hr", sa.Float(), nullable=True),
        sa.Column("bp_sys", sa.Float(), nullable=True),
        sa.Column("bp_dia", sa.Float(), nullable=True),
        sa.Column("rr", sa.Float(), nullable=True),
        sa.Column("temp", sa.Float(), nullable=True),
        sa.Column("spo2", sa.Float(), nullable=True),
        sa.Column("effective_dt", sa.DateTime(timezone=True), nullable=True),
        *_provenance(),
        *_timestamps(),
        sa.PrimaryKeyConstraint("vital_id"),
    )
    op.create_index(
        "ix_vitals_patient_effective",
        "vitals",
        ["patient_id", "effective_dt"],
        unique=False,
    )
    op.create_table(
        "nursing_notes",
        sa.Column("note_id", sa.String(length=128), nullable=False),
        *_patient_ref(),
        sa.Column("note_text", sa.Text(), nullable=False),
        sa.Column("author", sa.String(length=200), nullable=True),
        sa.Column("note_dt", sa.DateTime(timezone=True), nullable=True),
        *_provenance(),
        *_timestamps(),
        sa.PrimaryKeyConstraint("note_id"),
    )
    for table in CLINICAL_TABLES:
        op.create_index(f"ix_{table}_patient_id", table, ["patient_id"], unique=False)

    op.create_table(
        "fhir_raw",
        sa.Column("raw_id", sa.String(length=64), nullable=False),
        *_patient_ref(),
        sa.Column("resource_type", sa.String(length=64), nullable=False),
        sa.Column("resource_id", sa.String(length=128), nullable=True),
        sa.Column("raw_json", JSON_TYPE, nullable=False),
        sa.Column(
            "ingested_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("raw_id"),
    )
    op.create_index("ix_fhir_raw_patient_id", "fhir_raw", ["patient_id"], unique=False)

    op.create_table(
        "patient_snapshots",
        sa.Column("snapshot_id", sa.String(length=64), nullable=False),
        *_patient_ref(),
        sa.Column("snapshot_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("lookback_hours", sa.Integer(), nullable=False),
        sa.Column("completeness_flags", JSON_TYPE, nullable=False),
        sa.Column("resource_counts", JSON_TYPE, nullable=False),
        sa.PrimaryKeyConstraint("snapshot_id"),
    )
    op.create_index(
        "ix_patient_snapshots_patient_at",
        "patient_snapshots",
        ["patient_id", "snapshot_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_patient_snapshots_patient_at", table_name="patient_snapshots")
    op.drop_table("patient_snapshots")
    op.drop_index("ix_fhir_raw_patient_id", table_name="fhir_raw")
    op.drop_table("fhir_raw")
    op.drop_index("ix_vitals_patient_effective", table_name="vitals")
    op.drop_index("ix_lab_results_patient_effective", table_name="lab_results")
    for table in reversed(CLINICAL_TABLES):
        op.drop_index(f"ix_{table}_patient_id", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_patients_risk_score", table_name="patients")
    op.drop_table("patients")
