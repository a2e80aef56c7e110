"""
Accounting Event Publisher

Entry point for POS domain actions. Each publish_* call wraps the action in a
POSEvent, hands it to the AccountingBridge and broadcasts the outcome on the
EventChannel:

    accounting.succeeded  result.success is True
    accounting.failed     failed result, or an exception (which is re-raised)
"""

from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Union

from core.audit.events import AuditLogger
from core.config import PipelineConfig, default_config
from core.errors import NotInitializedError
from core.models.canonical import Order, OrderVoided, PaymentReceived, RefundProcessed
from core.models.ledger import AccountingResult
from core.observability.logging import get_logger

from storage.eav_store import EAVStore
from storage.migration_safe import MigrationSafeAdapter

from .channel import EventChannel, Listener
from .events import Notification, NotificationTopic, POSEvent, POSEventType
from .orchestrator import AccountingBridge

logger = get_logger(__name__)


class AccountingEventPublisher:
    """
    Publishes POS actions to the accounting bridge.

    Usage:
        publisher = build_publisher(config)
        publisher.initialize("org-1")
        result = await publisher.publish_order_completed(order)
    """

    def __init__(
        self,
        bridge: AccountingBridge,
        channel: Optional[EventChannel] = None,
        config: Optional[PipelineConfig] = None,
    ):
        self.config = config or bridge.config or default_config()
        self.bridge = bridge
        self.channel = channel or EventChannel(self.config.max_delivery_attempts)
        self.organization_id: Optional[str] = None

        self._by_type: Counter = Counter()
        self._succeeded = 0
        self._failed = 0
        self._last_event_at: Optional[datetime] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def initialized(self) -> bool:
        return self.organization_id is not None

    def initialize(self, organization_id: str) -> None:
        """
        Bind the publisher and its bridge to an organization.

        Re-initializing releases the previous binding first. Counters are kept.
        """
        if self.organization_id == organization_id and self.bridge.initialized:
            return
        if self.initialized:
            logger.info(
                "Re-binding publisher",
                extra_fields={"previous": self.organization_id, "organization_id": organization_id},
            )
            self.bridge.cleanup()
            self.organization_id = None

        self.bridge.initialize(organization_id)
        self.organization_id = organization_id

    def cleanup(self) -> None:
        """Release the organization binding."""
        self.bridge.cleanup()
        self.organization_id = None

    # =========================================================================
    # Publishing
    # =========================================================================

    async def publish_order_completed(self, order: Order, actor_id: Optional[str] = None) -> AccountingResult:
        """Record a completed order."""
        return await self._publish(POSEventType.ORDER_COMPLETED, order, actor_id)

    async def publish_payment_received(
        self, payment: PaymentReceived, actor_id: Optional[str] = None
    ) -> AccountingResult:
        """Confirm payment for a recorded order."""
        return await self._publish(POSEventType.PAYMENT_RECEIVED, payment, actor_id)

    async def publish_refund_processed(
        self, refund: RefundProcessed, actor_id: Optional[str] = None
    ) -> AccountingResult:
        """Record a refund."""
        return await self._publish(POSEventType.REFUND_PROCESSED, refund, actor_id or refund.user_id)

    async def publish_order_voided(self, void: OrderVoided, actor_id: Optional[str] = None) -> AccountingResult:
        """Void a recorded order."""
        return await self._publish(POSEventType.ORDER_VOIDED, void, actor_id or void.user_id)

    async def publish(self, event_type: Union[str, POSEventType], data: Any, actor_id: Optional[str] = None) -> AccountingResult:
        """Publish an event by type name (used by replay tooling)."""
        return await self._publish(event_type, data, actor_id)

    async def _publish(self, event_type, data: Any, actor_id: Optional[str]) -> AccountingResult:
        if not self.initialized:
            raise NotInitializedError("Event publisher is not initialized; call initialize(organization_id) first")

        type_value = event_type.value if isinstance(event_type, POSEventType) else str(event_type)
        event = POSEvent(
            type=type_value,
            data=data,
            organization_id=self.organization_id,
            actor_id=actor_id,
        )
        self._by_type[type_value] += 1
        self._last_event_at = event.timestamp

        try:
            result = await self.bridge.handle(event)
        except Exception as e:
            self._failed += 1
            logger.error(f"Event {type_value} raised: {e}", extra_fields={"event_id": event.id})
            await self.channel.publish(Notification(topic=NotificationTopic.FAILED, event=event, error=str(e)))
            raise

        if result.success:
            self._succeeded += 1
            await self.channel.publish(Notification(topic=NotificationTopic.SUCCEEDED, event=event, result=result))
        else:
            self._failed += 1
            await self.channel.publish(Notification(
                topic=NotificationTopic.FAILED,
                event=event,
                result=result,
                error=result.error or result.message,
            ))
        return result

    # =========================================================================
    # Subscriptions / Stats
    # =========================================================================

    def subscribe(
        self,
        listener: Listener,
        topics: Optional[Iterable[Union[str, NotificationTopic]]] = None,
    ) -> str:
        """Register a notification listener. Returns the subscription id."""
        return self.channel.subscribe(listener, topics)

    def unsubscribe(self, subscription: Union[str, Listener]) -> bool:
        return self.channel.unsubscribe(subscription)

    def get_stats(self) -> Dict[str, Any]:
        """Event counts overall and by type, plus outcome and channel statistics."""
        return {
            "organization_id": self.organization_id,
            "total_events": sum(self._by_type.values()),
            "events_by_type": dict(self._by_type),
            "succeeded": self._succeeded,
            "failed": self._failed,
            "last_event_at": self._last_event_at.isoformat() if self._last_event_at else None,
            "channel": self.channel.get_stats(),
        }


def build_publisher(
    config: Optional[PipelineConfig] = None,
    audit: Optional[AuditLogger] = None,
    store: Optional[EAVStore] = None,
) -> AccountingEventPublisher:
    """
    Wire store, adapter, bridge and channel from configuration.

    Args:
        config: Pipeline configuration (defaults if omitted)
        audit: Audit logger shared by adapter, journal builder and bridge
        store: Existing store (a new one at the configured path otherwise)

    Returns:
        An uninitialized AccountingEventPublisher
    """
    config = config or default_config()
    store = store or EAVStore(config.persistence.database_path)
    adapter = MigrationSafeAdapter(
        store,
        allow_simulated_writes=config.persistence.allow_simulated_writes,
        audit=audit,
    )
    bridge = AccountingBridge(adapter, config, audit=audit)
    return AccountingEventPublisher(bridge, EventChannel(config.max_delivery_attempts), config)
