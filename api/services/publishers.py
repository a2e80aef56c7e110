"""Per-organization publisher registry.

Publishers are bound to one organization each, so the API keeps one per
organization. All of them share the same store and audit logger.
"""

from typing import Any, Dict, Optional

from core.audit.events import AuditLogger
from core.config import PipelineConfig
from core.observability.logging import get_logger

from bridge.publisher import AccountingEventPublisher, build_publisher
from journal_builder.builder import JournalBuilder
from storage.eav_store import EAVStore
from storage.migration_safe import MigrationSafeAdapter

logger = get_logger(__name__)


class PublisherRegistry:
    """Lazily builds and caches one initialized publisher per organization."""

    def __init__(self, config: PipelineConfig, audit: Optional[AuditLogger] = None):
        self.config = config
        self.audit = audit
        self.store = EAVStore(config.persistence.database_path)
        self.adapter = MigrationSafeAdapter(
            self.store,
            allow_simulated_writes=config.persistence.allow_simulated_writes,
            audit=audit,
        )
        self.journals = JournalBuilder(self.adapter, config, audit)
        self._publishers: Dict[str, AccountingEventPublisher] = {}

    def get(self, organization_id: str) -> AccountingEventPublisher:
        """Publisher bound to the organization (created on first use)."""
        publisher = self._publishers.get(organization_id)
        if publisher is None:
            publisher = build_publisher(self.config, self.audit, store=self.store)
            publisher.initialize(organization_id)
            self._publishers[organization_id] = publisher
            logger.info("Publisher created", extra_fields={"organization_id": organization_id})
        return publisher

    def find(self, organization_id: str) -> Optional[AccountingEventPublisher]:
        return self._publishers.get(organization_id)

    @property
    def organizations(self):
        return sorted(self._publishers)

    def stats(self) -> Dict[str, Any]:
        return {org: publisher.get_stats() for org, publisher in self._publishers.items()}

    def close(self) -> None:
        """Release every organization binding."""
        for publisher in self._publishers.values():
            publisher.cleanup()
        self._publishers.clear()
