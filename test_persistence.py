"""
Persistence Layer Tests

Entity/metadata store behaviour and the migration-safe fallback chain,
including the degrade-to-simulated-write path (scenario F).
"""

import asyncio
import uuid

import pytest

from core.audit.events import AuditEventType
from core.errors import IdentifierFormatError, PersistenceError
from core.observability.metrics import get_metrics
from storage import (
    SIMULATED_WRITE_PREFIX,
    EAVStore,
    MigrationSafeAdapter,
    WriteTier,
    coerce_identifier,
)
from storage.migration_safe import METADATA_WRITE_PREFIX


ORG = "org-test"


def entity(code="ORD-1", entity_id=None, entity_type="universal_transaction"):
    return {
        "id": entity_id or str(uuid.uuid4()),
        "organization_id": ORG,
        "entity_type": entity_type,
        "entity_code": code,
        "entity_name": f"SALES_ORDER {code}",
        "status": "draft",
    }


class BrokenStore(EAVStore):
    """Store whose entity inserts fail the way a half-migrated schema does."""

    def __init__(self, db_path, direct_error=None, raw_error=None, metadata_error=None):
        super().__init__(db_path)
        self.direct_error = direct_error
        self.raw_error = raw_error
        self.metadata_error = metadata_error
        self.raw_attempts = 0

    async def insert_entity(self, row):
        if self.direct_error is not None:
            raise self.direct_error
        return await super().insert_entity(row)

    async def insert_entity_raw(self, row):
        self.raw_attempts += 1
        if self.raw_error is not None:
            raise self.raw_error
        return await super().insert_entity_raw(row)

    async def insert_metadata(self, row):
        if self.metadata_error is not None:
            raise self.metadata_error
        return await super().insert_metadata(row)


class TestEAVStore:
    """SQLite entity/metadata store."""

    def test_standard_insert_fires_audit_trigger(self, store):
        row = entity()
        entity_id = asyncio.run(store.insert_entity(row))

        assert entity_id == row["id"]
        stored = asyncio.run(store.get_entity(entity_id))
        assert stored["entity_code"] == "ORD-1"
        assert stored["insert_path"] == "standard"
        audit_rows = asyncio.run(store.get_audit_log(entity_id))
        assert [r["action"] for r in audit_rows] == ["INSERT"]

    def test_standard_insert_rejects_non_uuid(self, store):
        with pytest.raises(IdentifierFormatError):
            asyncio.run(store.insert_entity(entity(entity_id="txn-1")))

    def test_raw_insert_coerces_id_and_skips_trigger(self, store):
        entity_id = asyncio.run(store.insert_entity_raw(entity(entity_id="txn-1")))

        assert entity_id == coerce_identifier(ORG, "txn-1")
        assert asyncio.run(store.get_entity(entity_id))["insert_path"] == "raw"
        assert asyncio.run(store.get_audit_log(entity_id)) == []

    def test_coerce_identifier_is_deterministic(self):
        assert coerce_identifier(ORG, "txn-1") == coerce_identifier(ORG, "txn-1")
        assert coerce_identifier(ORG, "txn-1") != coerce_identifier("org-other", "txn-1")
        existing = str(uuid.uuid4())
        assert coerce_identifier(ORG, existing) == existing

    def test_find_count_and_list(self, store):
        async def seed():
            for code in ("JE-20240109-0001", "JE-20240109-0002", "JE-20240110-0001"):
                await store.insert_entity(entity(code=code, entity_type="journal_entry"))

        asyncio.run(seed())

        assert asyncio.run(store.count_entities(ORG, "journal_entry")) == 3
        assert asyncio.run(store.count_entities(ORG, "journal_entry", "JE-20240109-")) == 2
        found = asyncio.run(store.find_entity_by_code(ORG, "journal_entry", "JE-20240110-0001"))
        assert found is not None
        assert asyncio.run(store.find_entity_by_code("org-other", "journal_entry", "JE-20240110-0001")) is None

        listed = asyncio.run(store.list_entities(ORG, "journal_entry", limit=2))
        assert len(listed) == 2

    def test_metadata_round_trip(self, store):
        entity_id = asyncio.run(store.insert_entity(entity()))
        asyncio.run(store.insert_metadata({
            "organization_id": ORG,
            "entity_id": entity_id,
            "metadata_type": "transaction_details",
            "metadata_key": "universal_transaction",
            "metadata_value": {"posting_status": "draft"},
        }))

        assert asyncio.run(store.update_metadata(
            entity_id, "transaction_details", "universal_transaction", {"posting_status": "posted"}
        )) is True
        metadata = asyncio.run(store.get_metadata(entity_id, "transaction_details", "universal_transaction"))
        assert metadata["metadata_value"] == {"posting_status": "posted"}
        assert asyncio.run(store.update_metadata("missing", "transaction_details", "x", {})) is False

    def test_update_entity_only_allows_name_and_status(self, store):
        entity_id = asyncio.run(store.insert_entity(entity()))

        assert asyncio.run(store.update_entity(entity_id, status="posted")) is True
        assert asyncio.run(store.get_entity(entity_id))["status"] == "posted"
        with pytest.raises(PersistenceError):
            asyncio.run(store.update_entity(entity_id, entity_code="ORD-9"))


class TestFallbackChain:
    """Layered entity writes through MigrationSafeAdapter."""

    def test_direct_tier(self, adapter):
        result = asyncio.run(adapter.create_entity(entity()))

        assert result.success
        assert result.tier == WriteTier.DIRECT
        assert result.advisory is None

    def test_identifier_error_falls_back_to_trigger_bypass(self, adapter, audit_backend):
        result = asyncio.run(adapter.create_entity(entity(entity_id="txn-1")))

        assert result.success
        assert result.tier == WriteTier.TRIGGER_BYPASS
        assert result.entity_id == coerce_identifier(ORG, "txn-1")
        assert not result.simulated

        fallbacks = audit_backend.query(event_type=AuditEventType.PERSISTENCE_FALLBACK.value)
        assert len(fallbacks) == 1
        assert fallbacks[0].details["tier"] == "trigger_bypass"

    def test_scenario_f_both_tiers_fail_reports_success_with_advisory(self, tmp_path):
        store = BrokenStore(
            tmp_path / "ledger.db",
            direct_error=IdentifierFormatError("txn-1"),
            raw_error=PersistenceError("no such column: insert_path"),
        )
        adapter = MigrationSafeAdapter(store)

        result = asyncio.run(adapter.create_entity(entity(entity_id="txn-1")))

        assert store.raw_attempts == 1
        assert result.success is True
        assert result.simulated is True
        assert result.tier == WriteTier.SIMULATED
        assert result.advisory.startswith(SIMULATED_WRITE_PREFIX)
        assert "no such column" in result.advisory
        assert asyncio.run(store.count_entities(ORG, "universal_transaction")) == 0

    def test_non_identifier_error_skips_trigger_bypass(self, tmp_path):
        store = BrokenStore(tmp_path / "ledger.db", direct_error=PersistenceError("disk I/O error"))
        result = asyncio.run(MigrationSafeAdapter(store).create_entity(entity()))

        assert store.raw_attempts == 0
        assert result.tier == WriteTier.SIMULATED

    def test_exhaustion_without_simulated_tier_fails(self, tmp_path):
        store = BrokenStore(
            tmp_path / "ledger.db",
            direct_error=IdentifierFormatError("txn-1"),
            raw_error=PersistenceError("database is locked"),
        )
        adapter = MigrationSafeAdapter(store, allow_simulated_writes=False)

        result = asyncio.run(adapter.create_entity(entity(entity_id="txn-1")))

        assert result.success is False
        assert result.tier == WriteTier.NONE
        assert "database is locked" in result.error
        assert result.advisory is None

    def test_code_conflict_is_not_a_fallback(self, adapter):
        asyncio.run(adapter.create_entity(entity(code="JE-20240109-0001", entity_type="journal_entry")))
        result = asyncio.run(adapter.create_entity(entity(code="JE-20240109-0001", entity_type="journal_entry")))

        assert result.success is False
        assert result.conflict is True
        assert result.tier == WriteTier.DIRECT

    def test_tier_metrics(self, adapter):
        asyncio.run(adapter.create_entity(entity(code="ORD-1")))
        asyncio.run(adapter.create_entity(entity(code="ORD-2", entity_id="txn-2")))

        persistence = get_metrics().get_summary()["persistence"]
        assert persistence["by_tier"]["direct"]["succeeded"] == 1
        assert persistence["by_tier"]["direct"]["failed"] == 1
        assert persistence["by_tier"]["trigger_bypass"]["succeeded"] == 1
        assert persistence["fallbacks"] == 1


class TestMetadataAndUpdates:
    """Metadata tolerance and strict updates."""

    def test_metadata_failure_is_tolerated(self, tmp_path):
        store = BrokenStore(tmp_path / "ledger.db", metadata_error=PersistenceError("readonly database"))
        adapter = MigrationSafeAdapter(store)

        result = asyncio.run(adapter.create_metadata({
            "organization_id": ORG,
            "entity_id": "e-1",
            "metadata_type": "ai_intelligence",
            "metadata_key": "classification",
            "metadata_value": {},
        }))

        assert result.success
        assert result.advisory.startswith(METADATA_WRITE_PREFIX)

    def test_update_metadata_missing_raises(self, adapter):
        with pytest.raises(PersistenceError):
            asyncio.run(adapter.update_metadata("missing", "transaction_details", "universal_transaction", {}))

    def test_update_entity_status_missing_raises(self, adapter):
        with pytest.raises(PersistenceError, match="not found"):
            asyncio.run(adapter.update_entity_status("missing", "posted"))


class TestMigrationMode:
    """Counting window for fallback activity."""

    def test_summary_counts_tiers(self, tmp_path):
        store = BrokenStore(tmp_path / "ledger.db")
        adapter = MigrationSafeAdapter(store)
        adapter.initialize_migration_mode()
        assert adapter.in_migration_mode

        asyncio.run(adapter.create_entity(entity(code="ORD-1")))
        asyncio.run(adapter.create_entity(entity(code="ORD-2", entity_id="txn-2")))
        store.direct_error = PersistenceError("disk full")
        asyncio.run(adapter.create_entity(entity(code="ORD-3")))

        summary = adapter.finalize_migration_mode()

        assert not adapter.in_migration_mode
        assert summary.total_writes == 3
        assert summary.by_tier == {"direct": 1, "trigger_bypass": 1, "simulated": 1}
        assert summary.simulated_writes == 1
        assert len(summary.advisories) == 1
        assert summary.to_dict()["finished_at"] is not None
