"""Storage package - entity/metadata store and migration-safe adapter."""

from storage.eav_store import EAVStore, coerce_identifier
from storage.migration_safe import (
    MigrationSafeAdapter,
    MigrationSummary,
    WriteResult,
    WriteTier,
    InsertTier,
    DirectInsertTier,
    TriggerBypassInsertTier,
    SimulatedInsertTier,
    SIMULATED_WRITE_PREFIX,
)

__all__ = [
    "EAVStore",
    "coerce_identifier",
    "MigrationSafeAdapter",
    "MigrationSummary",
    "WriteResult",
    "WriteTier",
    "InsertTier",
    "DirectInsertTier",
    "TriggerBypassInsertTier",
    "SimulatedInsertTier",
    "SIMULATED_WRITE_PREFIX",
]
