"""Snapshot sync pipeline."""

from wardsync.services.sync.census import CensusBuilder, CensusState
from wardsync.services.sync.completeness import build_completeness_flags
from wardsync.services.sync.orchestrator import SyncOrchestrator
from wardsync.services.sync.store import SnapshotStore, UpsertResult
from wardsync.services.sync.summary import snapshot_to_summary
from wardsync.services.sync.transformer import SnapshotTransformer

__all__ = [
    "CensusBuilder",
    "CensusState",
    "SnapshotStore",
    "SnapshotTransformer",
    "SyncOrchestrator",
    "UpsertResult",
    "build_completeness_flags",
    "snapshot_to_summary",
]
