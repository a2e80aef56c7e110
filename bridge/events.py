"""POS events and accounting notifications.

A POSEvent wraps one domain action on its way from the publisher to the
bridge. A Notification is what the publisher broadcasts on the channel once
the bridge has handled (or failed to handle) the event.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from core.models.ledger import AccountingResult


class POSEventType(str, Enum):
    """Event types the bridge knows how to handle."""
    ORDER_COMPLETED = "order.completed"
    PAYMENT_RECEIVED = "payment.received"
    REFUND_PROCESSED = "refund.processed"
    ORDER_VOIDED = "order.voided"


class NotificationTopic(str, Enum):
    """Channel topics emitted by the publisher."""
    SUCCEEDED = "accounting.succeeded"
    FAILED = "accounting.failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump(data: Any) -> Any:
    if hasattr(data, "model_dump"):
        return data.model_dump(mode="json")
    return data


@dataclass
class POSEvent:
    """
    A domain action routed to the accounting bridge.

    Attributes:
        type: Event type (see POSEventType)
        data: Domain payload (Order, PaymentReceived, RefundProcessed, OrderVoided)
        organization_id: Organization the publisher is bound to
        source: Originating surface
        actor_id: User who triggered the action, if known
        timestamp: When the event was built
        id: Unique event id
    """
    type: str
    data: Any
    organization_id: str
    source: str = "pos"
    actor_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "data": _dump(self.data),
            "organization_id": self.organization_id,
            "source": self.source,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Notification:
    """
    Outcome broadcast for one handled event.

    Attributes:
        topic: accounting.succeeded or accounting.failed
        event: The original POS event
        result: Accounting result, when the bridge returned one
        error: Failure message for failed outcomes
    """
    topic: NotificationTopic
    event: POSEvent
    result: Optional[AccountingResult] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic.value,
            "event": self.event.to_dict(),
            "result": self.result.model_dump(mode="json") if self.result else None,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }
