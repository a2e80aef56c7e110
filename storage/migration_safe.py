"""Migration-safe persistence adapter.

Wraps the entity/metadata store with an ordered fallback chain so a
partially migrated datastore never silently loses a financial record:

1. DirectInsertTier - standard insert path
2. TriggerBypassInsertTier - low-level insert, only after an identifier-format error
3. SimulatedInsertTier - logs the intended write and reports success with a
   ``SIMULATED_WRITE:`` advisory (disabled with allow_simulated_writes=False)

A unique-code conflict is not a storage failure: it is returned immediately
with ``conflict=True`` so callers can renumber.

Metadata failures are logged and tolerated.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from core.audit.events import AuditEventType, AuditLogger
from core.errors import EntityConflictError, IdentifierFormatError, PersistenceError
from core.observability.logging import get_logger
from core.observability.metrics import record_persistence_tier

from storage.eav_store import EAVStore

logger = get_logger(__name__)

SIMULATED_WRITE_PREFIX = "SIMULATED_WRITE:"
METADATA_WRITE_PREFIX = "METADATA_WRITE_FAILED:"


class WriteTier(str, Enum):
    """Persistence tier that produced a write result."""
    DIRECT = "direct"
    TRIGGER_BYPASS = "trigger_bypass"
    SIMULATED = "simulated"
    NONE = "none"


@dataclass
class WriteResult:
    """
    Outcome of a write through the adapter.

    Attributes:
        success: Whether the write is considered successful
        entity_id: Stored (or intended, when simulated) entity id
        error: Failure message, or advisory string on a degraded success
        tier: Tier that produced the result
        simulated: True when nothing was actually persisted
        conflict: True when the entity code already exists
    """
    success: bool
    tier: WriteTier
    entity_id: Optional[str] = None
    error: Optional[str] = None
    simulated: bool = False
    conflict: bool = False

    @property
    def advisory(self) -> Optional[str]:
        """Advisory string for a successful but degraded write."""
        return self.error if self.success else None


@dataclass
class MigrationSummary:
    """Counters collected between initialize and finalize of migration mode."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    total_writes: int = 0
    by_tier: Dict[str, int] = field(default_factory=dict)
    simulated_writes: int = 0
    failed_writes: int = 0
    conflicts: int = 0
    metadata_failures: int = 0
    advisories: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total_writes": self.total_writes,
            "by_tier": dict(self.by_tier),
            "simulated_writes": self.simulated_writes,
            "failed_writes": self.failed_writes,
            "conflicts": self.conflicts,
            "metadata_failures": self.metadata_failures,
            "advisories": list(self.advisories),
        }


# =============================================================================
# Insert Tiers
# =============================================================================

class InsertTier(ABC):
    """One step of the entity fallback chain."""

    tier: WriteTier

    def accepts(self, previous_error: Optional[Exception]) -> bool:
        """Whether this tier should run after ``previous_error``."""
        return True

    @abstractmethod
    async def insert(self, store: EAVStore, row: Dict[str, Any], previous_error: Optional[Exception]) -> WriteResult:
        """Attempt the write. Raise to hand over to the next tier."""


class DirectInsertTier(InsertTier):
    tier = WriteTier.DIRECT

    def accepts(self, previous_error: Optional[Exception]) -> bool:
        return previous_error is None

    async def insert(self, store, row, previous_error):
        entity_id = await store.insert_entity(row)
        return WriteResult(success=True, tier=self.tier, entity_id=entity_id)


class TriggerBypassInsertTier(InsertTier):
    tier = WriteTier.TRIGGER_BYPASS

    def accepts(self, previous_error: Optional[Exception]) -> bool:
        return isinstance(previous_error, IdentifierFormatError)

    async def insert(self, store, row, previous_error):
        entity_id = await store.insert_entity_raw(row)
        return WriteResult(success=True, tier=self.tier, entity_id=entity_id)


class SimulatedInsertTier(InsertTier):
    tier = WriteTier.SIMULATED

    async def insert(self, store, row, previous_error):
        advisory = (
            f"{SIMULATED_WRITE_PREFIX} {row.get('entity_type')} {row.get('entity_code')} "
            f"was not persisted ({previous_error})"
        )
        logger.warning(
            "Simulating entity write",
            extra_fields={
                "entity_type": row.get("entity_type"),
                "entity_code": row.get("entity_code"),
                "intended_row": {k: v for k, v in row.items() if k != "metadata_value"},
                "previous_error": str(previous_error),
            },
        )
        return WriteResult(
            success=True,
            tier=self.tier,
            entity_id=row.get("id"),
            error=advisory,
            simulated=True,
        )


# =============================================================================
# Adapter
# =============================================================================

class MigrationSafeAdapter:
    """
    Storage adapter with layered entity fallback.

    Usage:
        adapter = MigrationSafeAdapter(EAVStore(db_path))
        result = await adapter.create_entity({...})
        if result.conflict:
            ...renumber...
    """

    def __init__(
        self,
        store: EAVStore,
        allow_simulated_writes: bool = True,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.allow_simulated_writes = allow_simulated_writes
        self.audit = audit
        self.tiers: List[InsertTier] = [DirectInsertTier(), TriggerBypassInsertTier()]
        if allow_simulated_writes:
            self.tiers.append(SimulatedInsertTier())
        self._migration_mode = False
        self._summary = MigrationSummary(started_at=datetime.now(timezone.utc))

    # =========================================================================
    # Migration Mode
    # =========================================================================

    @property
    def in_migration_mode(self) -> bool:
        return self._migration_mode

    def initialize_migration_mode(self) -> None:
        """Start a fresh counting window for fallback activity."""
        self._migration_mode = True
        self._summary = MigrationSummary(started_at=datetime.now(timezone.utc))
        logger.info(
            "Migration mode initialized",
            extra_fields={"tiers": [t.tier.value for t in self.tiers]},
        )

    def finalize_migration_mode(self) -> MigrationSummary:
        """Close the counting window and return its summary."""
        summary = self._summary
        summary.finished_at = datetime.now(timezone.utc)
        self._migration_mode = False
        logger.info("Migration mode finalized", extra_fields=summary.to_dict())
        self._summary = MigrationSummary(started_at=datetime.now(timezone.utc))
        return summary

    def _count(self, result: WriteResult) -> None:
        summary = self._summary
        summary.total_writes += 1
        summary.by_tier[result.tier.value] = summary.by_tier.get(result.tier.value, 0) + 1
        if result.simulated:
            summary.simulated_writes += 1
        if result.conflict:
            summary.conflicts += 1
        elif not result.success:
            summary.failed_writes += 1
        if result.advisory:
            summary.advisories.append(result.advisory)

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_entity(self, data: Dict[str, Any]) -> WriteResult:
        """
        Create an entity through the fallback chain.

        Args:
            data: Entity row (id, organization_id, entity_type, entity_code, entity_name)

        Returns:
            WriteResult from the first tier that succeeds, a conflict result,
            or a failed result once every tier is exhausted
        """
        previous_error: Optional[Exception] = None

        for index, tier in enumerate(self.tiers):
            if index > 0 and not tier.accepts(previous_error):
                continue

            try:
                result = await tier.insert(self.store, data, previous_error)
            except EntityConflictError as e:
                logger.info(
                    f"Entity code conflict on tier {tier.tier.value}",
                    extra_fields={"entity_type": e.entity_type, "entity_code": e.entity_code},
                )
                record_persistence_tier(tier.tier.value, success=False)
                result = WriteResult(success=False, tier=tier.tier, error=str(e), conflict=True)
                self._count(result)
                return result
            except Exception as e:
                logger.warning(
                    f"Persistence tier {tier.tier.value} failed: {e}",
                    extra_fields={
                        "entity_type": data.get("entity_type"),
                        "entity_code": data.get("entity_code"),
                        "error_type": type(e).__name__,
                    },
                )
                record_persistence_tier(tier.tier.value, success=False)
                previous_error = e
                continue

            fallback = index > 0
            record_persistence_tier(tier.tier.value, success=True, fallback=fallback, simulated=result.simulated)
            logger.info(
                f"Entity written via {tier.tier.value} tier",
                extra_fields={
                    "entity_type": data.get("entity_type"),
                    "entity_code": data.get("entity_code"),
                    "entity_id": result.entity_id,
                },
            )
            if fallback and self.audit is not None:
                self.audit.log_warning(
                    AuditEventType.PERSISTENCE_FALLBACK,
                    f"{data.get('entity_type')} {data.get('entity_code')} written via {tier.tier.value} tier",
                    organization_id=data.get("organization_id"),
                    details={"tier": tier.tier.value, "previous_error": str(previous_error), "simulated": result.simulated},
                )
            self._count(result)
            return result

        result = WriteResult(
            success=False,
            tier=WriteTier.NONE,
            error=f"All persistence tiers failed: {previous_error}",
        )
        logger.error(
            "Entity write exhausted every persistence tier",
            extra_fields={"entity_type": data.get("entity_type"), "entity_code": data.get("entity_code")},
        )
        self._count(result)
        return result

    async def create_metadata(self, data: Dict[str, Any]) -> WriteResult:
        """
        Attach a metadata document. Failures are logged and tolerated.

        Returns:
            WriteResult with success=True; ``error`` carries an advisory on failure
        """
        try:
            await self.store.insert_metadata(data)
        except Exception as e:
            logger.warning(
                f"Metadata write failed: {e}",
                extra_fields={
                    "entity_id": data.get("entity_id"),
                    "metadata_type": data.get("metadata_type"),
                    "metadata_key": data.get("metadata_key"),
                },
            )
            self._summary.metadata_failures += 1
            advisory = f"{METADATA_WRITE_PREFIX} {data.get('metadata_type')}/{data.get('metadata_key')} ({e})"
            self._summary.advisories.append(advisory)
            return WriteResult(success=True, tier=WriteTier.NONE, entity_id=data.get("entity_id"), error=advisory)

        return WriteResult(success=True, tier=WriteTier.DIRECT, entity_id=data.get("entity_id"))

    # =========================================================================
    # Updates
    # =========================================================================

    async def update_metadata(self, entity_id: str, metadata_type: str, metadata_key: str, value: Any) -> None:
        """
        Replace a metadata document.

        Raises:
            PersistenceError: If the document does not exist or the write fails
        """
        try:
            updated = await self.store.update_metadata(entity_id, metadata_type, metadata_key, value)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Metadata update failed for {entity_id}: {e}") from e
        if not updated:
            raise PersistenceError(f"No {metadata_type}/{metadata_key} metadata for entity {entity_id}")

    async def update_entity_status(self, entity_id: str, status: str) -> None:
        """
        Set an entity's status column.

        Raises:
            PersistenceError: If the entity does not exist or the write fails
        """
        try:
            updated = await self.store.update_entity(entity_id, status=status)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Entity status update failed for {entity_id}: {e}") from e
        if not updated:
            raise PersistenceError(f"Entity {entity_id} not found")

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_entity(self, entity_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.get_entity(entity_id)

    async def find_entity_by_code(self, organization_id: str, entity_type: str, entity_code: str) -> Optional[Dict[str, Any]]:
        return await self.store.find_entity_by_code(organization_id, entity_type, entity_code)

    async def get_metadata(self, entity_id: str, metadata_type: str, metadata_key: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return await self.store.get_metadata(entity_id, metadata_type, metadata_key)

    async def count_entities(self, organization_id: str, entity_type: str, code_prefix: Optional[str] = None) -> int:
        return await self.store.count_entities(organization_id, entity_type, code_prefix)

    async def list_entities(self, organization_id: str, entity_type: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        return await self.store.list_entities(organization_id, entity_type, limit, offset)
