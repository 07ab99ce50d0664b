"""Helpers for reading loosely-shaped FHIR R4 JSON resources."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

RESOURCE_KINDS: tuple[str, ...] = (
    "Patient",
    "Encounter",
    "AllergyIntolerance",
    "MedicationRequest",
    "Observation",
    "Condition",
    "DocumentReference",
)


def coerce_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def coerce_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    dt = coerce_datetime(value)
    if dt is not None:
        return dt.date()
    if isinstance(value, str):
        text = value.strip()
        if len(text) >= 10:
            try:
                return date.fromisoformat(text[:10])
            except ValueError:
                return None
        if len(text) == 4 and text.isdigit():
            return date(int(text), 1, 1)
    return None


def last_updated(resource: dict[str, Any]) -> datetime | None:
    meta = resource.get("meta")
    if not isinstance(meta, dict):
        return None
    return coerce_datetime(meta.get("lastUpdated"))


def effective_time(resource: dict[str, Any]) -> datetime | None:
    """Clinically relevant time of an Observation, if it carries one."""
    effective = coerce_datetime(resource.get("effectiveDateTime"))
    if effective is not None:
        return effective
    period = resource.get("effectivePeriod")
    if isinstance(period, dict):
        return coerce_datetime(period.get("start"))
    return None


def first_coding(concept: dict[str, Any] | None) -> dict[str, Any]:
    if not isinstance(concept, dict):
        return {}
    coding = concept.get("coding")
    if isinstance(coding, list) and coding and isinstance(coding[0], dict):
        return coding[0]
    return {}


def concept_display(concept: dict[str, Any] | None) -> str | None:
    """First coding display, falling back to the concept text."""
    display = first_coding(concept).get("display")
    if isinstance(display, str) and display.strip():
        return display.strip()
    if isinstance(concept, dict):
        text = concept.get("text")
        if isinstance(text, str) and text.strip():
            return text.strip()
    return None


def concept_codes(concept: dict[str, Any] | None) -> list[str]:
    if not isinstance(concept, dict):
        return []
    coding = concept.get("coding")
    if not isinstance(coding, list):
        return []
    codes: list[str] = []
    for item in coding:
        if not isinstance(item, dict):
            continue
        code = item.get("code")
        if isinstance(code, str) and code.strip():
            codes.append(code.strip())
    return codes


def reference_label(ref: dict[str, Any] | None) -> str | None:
    if not isinstance(ref, dict):
        return None
    for key in ("display", "reference"):
        value = ref.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def quantity_value(resource: dict[str, Any] | None) -> float | None:
    if not isinstance(resource, dict):
        return None
    quantity = resource.get("valueQuantity")
    if not isinstance(quantity, dict):
        return None
    value = quantity.get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def extract_bundle_resources(bundle: dict[str, Any]) -> list[dict[str, Any]]:
    entries = bundle.get("entry")
    if not isinstance(entries, list):
        return []
    resources: list[dict[str, Any]] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        resource = entry.get("resource")
        if isinstance(resource, dict):
            resources.append(resource)
    return resources


def extract_bundle_next_url(bundle: dict[str, Any]) -> str | None:
    links = bundle.get("link")
    if not isinstance(links, list):
        return None
    for link in links:
        if not isinstance(link, dict):
            continue
        relation = link.get("relation")
        url = link.get("url")
        if relation == "next" and isinstance(url, str) and url.strip():
            return url.strip()
    return None


def make_searchset(resources: list[dict[str, Any]], base_url: str) -> dict[str, Any]:
    """Wrap resources in a FHIR searchset Bundle."""
    entries = []
    for resource in resources:
        entry: dict[str, Any] = {"resource": resource}
        resource_type = resource.get("resourceType")
        resource_id = resource.get("id")
        if resource_type and resource_id:
            entry["fullUrl"] = f"{base_url}/{resource_type}/{resource_id}"
        entries.append(entry)
    return {
        "resourceType": "Bundle",
        "type": "searchset",
        "total": len(entries),
        "entry": entries,
    }
