#!/usr/bin/env python3
"""Sync a cohort from the FHIR source into the destination store."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict, dataclass

from wardsync import database
from wardsync.config import settings
from wardsync.logging import configure_logging
from wardsync.services.container import build_services
from wardsync.services.errors import FhirRequestError


@dataclass
class PreseedReport:
    requested: int
    total: int
    synced: int
    errors: int
    skipped: bool
    destination: str


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fetch, transform and upsert a cohort of patients sequentially."
    )
    parser.add_argument(
        "--count",
        type=int,
        default=settings.census_target_count,
        help=f"Number of most recently updated patients to sync (default: {settings.census_target_count}).",
    )
    parser.add_argument(
        "--patient-id",
        action="append",
        dest="patient_ids",
        default=[],
        help="Sync this patient id instead of listing the source. Repeatable.",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help=f"Logging level (default: {settings.log_level}).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON.",
    )
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> PreseedReport:
    await database.init_db()
    services = build_services(settings, database.async_session_maker)
    try:
        patient_ids = list(args.patient_ids)
        if not patient_ids:
            resources = await services.client.fetch_patient_list(args.count)
            patient_ids = [str(r["id"]) for r in resources if r.get("id")]
        result = await services.orchestrator.preseed_cohort(patient_ids)
        return PreseedReport(
            requested=len(patient_ids),
            total=result.total,
            synced=result.synced,
            errors=result.errors,
            skipped=result.skipped,
            destination="configured" if services.store.configured else "none (local-only)",
        )
    finally:
        await services.aclose()
        await database.close_db()


def main() -> int:
    args = _parse_args()
    configure_logging(args.log_level)

    try:
        report = asyncio.run(_run(args))
    except FhirRequestError as exc:
        print(f"Failed to list patients: {exc}", file=sys.stderr)
        return 2

    if args.json:
        print(json.dumps(asdict(report), indent=2))
    else:
        print(
            f"Preseed: {report.synced}/{report.total} synced, {report.errors} errors "
            f"(destination: {report.destination})"
        )
    return 1 if report.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
