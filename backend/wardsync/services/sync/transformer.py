"""Flatten a FHIR bundle into destination-ready snapshot rows."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import random
import uuid
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any

from wardsync.schemas.snapshot import (
    AllergyRow,
    LabRow,
    MedicationRow,
    NoteRow,
    PatientRow,
    RawResourceRow,
    Snapshot,
    VitalRow,
)
from wardsync.services.fhir.resources import (
    coerce_date,
    coerce_datetime,
    concept_codes,
    concept_display,
    effective_time,
    extract_bundle_resources,
    first_coding,
    last_updated,
    quantity_value,
    reference_label,
)

logger = logging.getLogger(__name__)

RAW_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "urn:wardsync:fhir-raw")

BP_PANEL_CODE = "85354-9"
SYSTOLIC_CODE = "8480-6"
DIASTOLIC_CODE = "8462-4"

# LOINC code -> VitalRow field
VITAL_FIELDS: dict[str, str] = {
    "8867-4": "hr",
    SYSTOLIC_CODE: "bp_sys",
    DIASTOLIC_CODE: "bp_dia",
    "9279-1": "rr",
    "8310-5": "temp",
    "2708-6": "spo2",
    "59408-5": "spo2",
}
VITAL_CODES = frozenset(VITAL_FIELDS) | {BP_PANEL_CODE}

CONDITION_SUMMARY_LIMIT = 5


def is_vital(observation: dict[str, Any]) -> bool:
    return any(code in VITAL_CODES for code in concept_codes(observation.get("code")))


def round_to_minute(value: datetime) -> datetime:
    """Round to the nearest whole minute in UTC."""
    as_utc = value.astimezone(UTC)
    return (as_utc + timedelta(seconds=30)).replace(second=0, microsecond=0)


def calendar_age(birth_date: date, today: date) -> int:
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return max(years, 0)


def lab_flag(observation: dict[str, Any]) -> str:
    """Map an Observation interpretation to normal, high, low or critical."""
    interpretation = observation.get("interpretation")
    if not isinstance(interpretation, list) or not interpretation:
        return "normal"
    first = interpretation[0] if isinstance(interpretation[0], dict) else {}
    raw = first_coding(first).get("code") or first.get("text") or ""
    code = str(raw).strip()
    upper = code.upper()
    lower = code.lower()
    if upper in {"HH", "LL"} or "critical" in lower:
        return "critical"
    if upper == "H" or "high" in lower:
        return "high"
    if upper == "L" or "low" in lower:
        return "low"
    if upper in {"A", "AA"} or "abnormal" in lower:
        return "high"
    return "normal"


def raw_resource_id(patient_id: str, resource: dict[str, Any]) -> str:
    """Deterministic audit id for one version of one source resource."""
    resource_id = resource.get("id")
    if not resource_id:
        resource_id = json.dumps(resource, sort_keys=True, default=str)
    updated = resource.get("meta", {}).get("lastUpdated") if isinstance(resource.get("meta"), dict) else None
    key = f"{patient_id}/{resource.get('resourceType')}/{resource_id}/{updated or ''}"
    return str(uuid.uuid5(RAW_ID_NAMESPACE, key))


def _row_id(patient_id: str, resource: dict[str, Any]) -> str:
    resource_id = resource.get("id")
    if isinstance(resource_id, str) and resource_id:
        return resource_id
    return raw_resource_id(patient_id, resource)


def _vital_id(patient_id: str, minute: datetime | None) -> str:
    stamp = minute.isoformat() if minute is not None else "none"
    return str(uuid.uuid5(RAW_ID_NAMESPACE, f"{patient_id}/vital/{stamp}"))


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class SnapshotTransformer:
    """Builds a Snapshot from a patient's bundle.

    ``rng`` drives the risk-score perturbation and room assignment; pass a
    seeded ``random.Random`` for reproducible output. ``now`` anchors the
    lookback window and age calculation.
    """

    def __init__(
        self,
        *,
        source_system: str = "SyntheaFHIR",
        note_max_length: int = 10000,
        rng: random.Random | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.source_system = source_system
        self.note_max_length = note_max_length
        self.rng = rng or random.Random()
        self._now = now or (lambda: datetime.now(UTC))

    def transform(
        self,
        patient_id: str,
        bundle: dict[str, Any],
        lookback_hours: int,
    ) -> Snapshot:
        now = self._now()
        resources = extract_bundle_resources(bundle)
        by_type: dict[str, list[dict[str, Any]]] = {}
        for resource in resources:
            by_type.setdefault(str(resource.get("resourceType")), []).append(resource)

        patients = by_type.get("Patient", [])
        conditions = by_type.get("Condition", [])
        patient = (
            self._patient_row(patient_id, patients[0], conditions, now)
            if patients
            else None
        )
        if patient is None:
            logger.warning("Bundle for %s has no Patient resource", patient_id)

        observations = self._within_lookback(by_type.get("Observation", []), now, lookback_hours)
        vital_observations = [obs for obs in observations if is_vital(obs)]
        lab_observations = [obs for obs in observations if not is_vital(obs)]

        return Snapshot(
            patient_id=patient_id,
            lookback_hours=lookback_hours,
            patient=patient,
            allergies=[
                self._allergy_row(patient_id, r)
                for r in by_type.get("AllergyIntolerance", [])
            ],
            medications=[
                self._medication_row(patient_id, r)
                for r in by_type.get("MedicationRequest", [])
            ],
            labs=[self._lab_row(patient_id, r) for r in lab_observations],
            vitals=self._group_vitals(patient_id, vital_observations),
            notes=[
                self._note_row(patient_id, r)
                for r in by_type.get("DocumentReference", [])
            ],
            raw_resources=[
                RawResourceRow(
                    raw_id=raw_resource_id(patient_id, r),
                    patient_id=patient_id,
                    resource_type=str(r.get("resourceType")),
                    resource_id=r.get("id"),
                    raw_json=r,
                )
                for r in resources
            ],
        )

    @staticmethod
    def _within_lookback(
        observations: list[dict[str, Any]],
        now: datetime,
        lookback_hours: int,
    ) -> list[dict[str, Any]]:
        if lookback_hours <= 0:
            return list(observations)
        cutoff = now - timedelta(hours=lookback_hours)
        kept = []
        for obs in observations:
            effective = effective_time(obs)
            if effective is None or effective >= cutoff:
                kept.append(obs)
        return kept

    def _provenance(self, patient_id: str, resource: dict[str, Any]) -> dict[str, Any]:
        return {
            "patient_id": patient_id,
            "fhir_resource_id": resource.get("id"),
            "fhir_last_updated": last_updated(resource),
            "source_system": self.source_system,
        }

    def _patient_row(
        self,
        patient_id: str,
        resource: dict[str, Any],
        conditions: list[dict[str, Any]],
        now: datetime,
    ) -> PatientRow:
        birth_date = coerce_date(resource.get("birthDate"))
        gender = resource.get("gender")
        sex = "M" if gender == "male" else "F" if gender == "female" else "U"

        diagnosis = "Unknown"
        if conditions:
            diagnosis = concept_display(conditions[0].get("code")) or "Unknown"
        condition_names = [
            concept_display(c.get("code")) or "Unknown condition"
            for c in conditions[:CONDITION_SUMMARY_LIMIT]
        ]
        summary = (
            f"Active conditions: {'; '.join(condition_names)}"
            if condition_names
            else "No active conditions documented"
        )

        risk = min(0.99, 0.3 + 0.1 * len(conditions) + self.rng.random() * 0.15)
        room = (
            f"{self.rng.randint(2, 8)}"
            f"{'ABCD'[self.rng.randrange(4)]}-{self.rng.randint(100, 149)}"
        )
        resource_id = str(resource.get("id") or patient_id)

        return PatientRow(
            **self._provenance(patient_id, resource),
            name=_patient_name(resource),
            age=calendar_age(birth_date, now.date()) if birth_date else 0,
            sex=sex,
            room=room,
            mrn=f"MRN-{resource_id[:6].upper()}",
            diagnosis=diagnosis,
            summary=summary,
            risk_score=round(risk, 3),
        )

    def _allergy_row(self, patient_id: str, resource: dict[str, Any]) -> AllergyRow:
        reaction = ""
        severity = None
        reactions = resource.get("reaction")
        if isinstance(reactions, list) and reactions and isinstance(reactions[0], dict):
            manifestations = reactions[0].get("manifestation")
            if isinstance(manifestations, list) and manifestations:
                reaction = concept_display(manifestations[0]) or ""
            severity = reactions[0].get("severity")
        return AllergyRow(
            **self._provenance(patient_id, resource),
            allergy_id=_row_id(patient_id, resource),
            allergen=concept_display(resource.get("code")) or "Unknown",
            reaction=reaction,
            severity=severity or resource.get("criticality") or "unknown",
        )

    def _medication_row(self, patient_id: str, resource: dict[str, Any]) -> MedicationRow:
        medication = (
            concept_display(resource.get("medicationCodeableConcept"))
            or reference_label(resource.get("medicationReference"))
            or "Unknown medication"
        )
        dosage_instructions = resource.get("dosageInstruction")
        dosage: dict[str, Any] = {}
        if isinstance(dosage_instructions, list) and dosage_instructions:
            if isinstance(dosage_instructions[0], dict):
                dosage = dosage_instructions[0]
        return MedicationRow(
            **self._provenance(patient_id, resource),
            medication_id=_row_id(patient_id, resource),
            medication=medication,
            status=resource.get("status") or "active",
            dosage=_dosage_text(dosage),
            route=concept_display(dosage.get("route")) or "",
            frequency=_frequency_text(dosage),
        )

    def _lab_row(self, patient_id: str, resource: dict[str, Any]) -> LabRow:
        numeric = quantity_value(resource)
        quantity = resource.get("valueQuantity") if isinstance(resource.get("valueQuantity"), dict) else {}
        if numeric is not None:
            value = _format_number(quantity.get("value"))
        elif isinstance(resource.get("valueString"), str):
            value = resource["valueString"]
        else:
            value = concept_display(resource.get("valueCodeableConcept")) or ""
        unit = quantity.get("unit") or quantity.get("code") or ""
        return LabRow(
            **self._provenance(patient_id, resource),
            lab_id=_row_id(patient_id, resource),
            lab_name=concept_display(resource.get("code")) or "Unknown lab",
            value=value,
            value_numeric=numeric,
            unit=str(unit),
            flag=lab_flag(resource),
            effective_dt=effective_time(resource),
        )

    def _group_vitals(
        self,
        patient_id: str,
        observations: list[dict[str, Any]],
    ) -> list[VitalRow]:
        grouped: dict[datetime | None, VitalRow] = {}
        for obs in observations:
            effective = effective_time(obs)
            key = round_to_minute(effective) if effective is not None else None
            row = grouped.get(key)
            if row is None:
                row = VitalRow(
                    **self._provenance(patient_id, obs),
                    vital_id=_vital_id(patient_id, key),
                    effective_dt=key,
                )
                grouped[key] = row

            value = quantity_value(obs)
            for code in concept_codes(obs.get("code")):
                field = VITAL_FIELDS.get(code)
                if field and value is not None:
                    setattr(row, field, value)

            if BP_PANEL_CODE in concept_codes(obs.get("code")):
                components = obs.get("component")
                for component in components if isinstance(components, list) else []:
                    if not isinstance(component, dict):
                        continue
                    codes = concept_codes(component.get("code"))
                    component_value = quantity_value(component)
                    if component_value is None:
                        continue
                    if SYSTOLIC_CODE in codes:
                        row.bp_sys = component_value
                    elif DIASTOLIC_CODE in codes:
                        row.bp_dia = component_value

        return [row for row in grouped.values() if row.has_measurement()]

    def _note_row(self, patient_id: str, resource: dict[str, Any]) -> NoteRow:
        authors = resource.get("author")
        author = None
        if isinstance(authors, list) and authors:
            author = reference_label(authors[0])
        note_dt = coerce_datetime(resource.get("date")) or last_updated(resource)
        return NoteRow(
            **self._provenance(patient_id, resource),
            note_id=_row_id(patient_id, resource),
            note_text=_note_text(resource)[: self.note_max_length],
            author=author or "Unknown",
            note_dt=note_dt,
        )


def _patient_name(resource: dict[str, Any]) -> str:
    names = resource.get("name")
    if not isinstance(names, list) or not names or not isinstance(names[0], dict):
        return "Unknown"
    name = names[0]
    given = name.get("given") if isinstance(name.get("given"), list) else []
    parts = [str(part) for part in given if part]
    if name.get("family"):
        parts.append(str(name["family"]))
    full_name = " ".join(parts).strip()
    return full_name or "Unknown"


def _dosage_text(dosage: dict[str, Any]) -> str:
    text = dosage.get("text")
    if isinstance(text, str) and text.strip():
        return text.strip()
    dose_and_rate = dosage.get("doseAndRate")
    if isinstance(dose_and_rate, list) and dose_and_rate and isinstance(dose_and_rate[0], dict):
        quantity = dose_and_rate[0].get("doseQuantity")
        if isinstance(quantity, dict) and quantity.get("value") is not None:
            return f"{_format_number(quantity['value'])} {quantity.get('unit') or ''}".strip()
    return ""


def _frequency_text(dosage: dict[str, Any]) -> str:
    timing = dosage.get("timing")
    if not isinstance(timing, dict):
        return ""
    code_text = concept_display(timing.get("code"))
    if code_text:
        return code_text
    repeat = timing.get("repeat")
    if not isinstance(repeat, dict) or repeat.get("frequency") is None:
        return ""
    text = f"{_format_number(repeat['frequency'])}x"
    if repeat.get("period") is not None:
        text += f" per {_format_number(repeat['period'])} {repeat.get('periodUnit') or ''}"
    return text.strip()


def _note_text(resource: dict[str, Any]) -> str:
    contents = resource.get("content")
    attachment: dict[str, Any] = {}
    if isinstance(contents, list) and contents and isinstance(contents[0], dict):
        if isinstance(contents[0].get("attachment"), dict):
            attachment = contents[0]["attachment"]

    data = attachment.get("data")
    if isinstance(data, str) and data:
        try:
            return base64.b64decode("".join(data.split()), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return data
    url = attachment.get("url")
    if isinstance(url, str) and url:
        return f"[Attachment: {url}]"
    description = resource.get("description")
    if isinstance(description, str) and description:
        return description
    return "No content available"
