"""Data-completeness indicators recorded alongside each snapshot."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from wardsync.schemas.snapshot import Snapshot

DEFAULT_CRITICAL_LABS: tuple[str, ...] = ("potassium", "creatinine", "lactate", "troponin")


def build_completeness_flags(
    snapshot: Snapshot,
    critical_lab_names: Iterable[str] = DEFAULT_CRITICAL_LABS,
) -> dict[str, Any]:
    """Flag missing or stale data categories for one snapshot.

    A critical lab counts as present when any lab name contains it,
    case-insensitively.
    """
    lab_names = [lab.lab_name.lower() for lab in snapshot.labs]
    missing_critical = [
        name
        for name in critical_lab_names
        if not any(name.lower() in lab_name for lab_name in lab_names)
    ]
    return {
        "missing_labs": not snapshot.labs,
        "stale_vitals": not snapshot.vitals,
        "no_medications": not snapshot.medications,
        "missing_critical_labs": missing_critical,
        "lookback_hours": snapshot.lookback_hours,
    }
