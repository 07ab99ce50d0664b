"""Process-wide service wiring, built once at startup."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

import requests
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wardsync.config import Settings
from wardsync.services.fhir.client import FhirRecordClient
from wardsync.services.sync.census import CensusBuilder
from wardsync.services.sync.orchestrator import SyncOrchestrator
from wardsync.services.sync.store import SnapshotStore
from wardsync.services.sync.transformer import SnapshotTransformer

logger = logging.getLogger("wardsync")


@dataclass
class ServiceContainer:
    settings: Settings
    client: FhirRecordClient
    transformer: SnapshotTransformer
    store: SnapshotStore
    orchestrator: SyncOrchestrator
    census: CensusBuilder

    async def aclose(self) -> None:
        await self.census.shutdown()
        self.client.close()


def build_services(
    config: Settings,
    session_maker: async_sessionmaker[AsyncSession] | None,
    *,
    http_session: requests.Session | None = None,
) -> ServiceContainer:
    """Construct the shared client, transformer, store, orchestrator and census builder."""
    client = FhirRecordClient.from_settings(config, session=http_session)
    transformer = SnapshotTransformer(
        source_system=config.source_system,
        note_max_length=config.note_max_length,
        rng=random.Random(config.risk_score_seed),
    )
    store = SnapshotStore.from_settings(config, session_maker)
    orchestrator = SyncOrchestrator(
        client=client,
        transformer=transformer,
        store=store,
        lookback_hours=config.sync_lookback_hours,
        skip_recent_minutes=config.sync_skip_recent_minutes,
    )
    census = CensusBuilder.from_settings(
        config,
        client=client,
        transformer=transformer,
        store=store,
        orchestrator=orchestrator,
    )
    logger.info(
        "Services ready (source=%s destination=%s)",
        config.fhir_base_url,
        "configured" if store.configured else "none",
    )
    return ServiceContainer(
        settings=config,
        client=client,
        transformer=transformer,
        store=store,
        orchestrator=orchestrator,
        census=census,
    )
