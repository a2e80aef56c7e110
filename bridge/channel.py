"""In-process notification channel.

Broadcasts each Notification to every subscriber whose topic filter matches.
Delivery is at-least-once: a subscriber that raises is retried up to
``max_delivery_attempts`` times, after which the notification is recorded in
the dead-letter list. Subscribers may be plain or async callables.
"""

import inspect
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, FrozenSet, Iterable, List, Optional, Union

from core.observability.logging import get_logger
from core.observability.metrics import get_metrics

from .events import Notification, NotificationTopic

logger = get_logger(__name__)

DEFAULT_MAX_DEAD_LETTERS = 1000


Listener = Callable[[Notification], Any]


@dataclass
class Subscription:
    """A registered listener and its topic filter (None = all topics)."""
    listener: Listener
    topics: Optional[FrozenSet[str]] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, topic: str) -> bool:
        return self.topics is None or topic in self.topics


@dataclass
class DeadLetter:
    """A notification a subscriber never accepted."""
    subscription_id: str
    notification: Notification
    error: str
    attempts: int
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "topic": self.notification.topic.value,
            "event_id": self.notification.event.id,
            "error": self.error,
            "attempts": self.attempts,
            "failed_at": self.failed_at.isoformat(),
        }


def _topic_value(topic: Union[str, NotificationTopic]) -> str:
    return topic.value if isinstance(topic, NotificationTopic) else str(topic)


class EventChannel:
    """
    Typed broadcast channel with at-least-once delivery.

    Usage:
        channel = EventChannel(max_delivery_attempts=3)
        sub_id = channel.subscribe(on_failure, topics=[NotificationTopic.FAILED])
        await channel.publish(notification)
    """

    def __init__(self, max_delivery_attempts: int = 3, max_dead_letters: int = DEFAULT_MAX_DEAD_LETTERS):
        if max_delivery_attempts < 1:
            raise ValueError("max_delivery_attempts must be at least 1")
        self.max_delivery_attempts = max_delivery_attempts
        self._subscriptions: Dict[str, Subscription] = {}
        # oldest dead letters drop off once the cap is reached
        self._dead_letters: Deque[DeadLetter] = deque(maxlen=max_dead_letters)
        self._dead_lettered = 0
        self._published = 0
        self._deliveries = 0
        self._retries = 0

    def subscribe(
        self,
        listener: Listener,
        topics: Optional[Iterable[Union[str, NotificationTopic]]] = None,
    ) -> str:
        """
        Register a listener.

        Args:
            listener: Callable taking a Notification (may be async)
            topics: Topics to receive (None = all)

        Returns:
            Subscription id for unsubscribe()
        """
        topic_filter = frozenset(_topic_value(t) for t in topics) if topics is not None else None
        subscription = Subscription(listener=listener, topics=topic_filter)
        self._subscriptions[subscription.id] = subscription
        return subscription.id

    def unsubscribe(self, subscription: Union[str, Listener]) -> bool:
        """Remove a subscription by id or by listener. Returns True if anything was removed."""
        if isinstance(subscription, str):
            return self._subscriptions.pop(subscription, None) is not None

        matching = [sid for sid, sub in self._subscriptions.items() if sub.listener == subscription]
        for sid in matching:
            del self._subscriptions[sid]
        return bool(matching)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def dead_letters(self) -> List[DeadLetter]:
        return list(self._dead_letters)

    def drain_dead_letters(self) -> List[DeadLetter]:
        """Return and clear the retained dead letters."""
        drained = list(self._dead_letters)
        self._dead_letters.clear()
        return drained

    async def publish(self, notification: Notification) -> int:
        """
        Deliver a notification to every matching subscriber.

        Returns:
            Number of subscribers that accepted the notification
        """
        self._published += 1
        topic = notification.topic.value
        delivered = 0

        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(topic):
                continue
            if await self._deliver(subscription, notification):
                delivered += 1

        return delivered

    async def _deliver(self, subscription: Subscription, notification: Notification) -> bool:
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_delivery_attempts + 1):
            try:
                outcome = subscription.listener(notification)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Subscriber {subscription.id} failed on attempt {attempt}/{self.max_delivery_attempts}: {e}",
                    extra_fields={"topic": notification.topic.value, "event_id": notification.event.id},
                )
                if attempt < self.max_delivery_attempts:
                    self._retries += 1
                continue

            self._deliveries += 1
            get_metrics().record_delivery(attempt)
            return True

        self._dead_letters.append(DeadLetter(
            subscription_id=subscription.id,
            notification=notification,
            error=str(last_error),
            attempts=self.max_delivery_attempts,
        ))
        self._dead_lettered += 1
        get_metrics().record_delivery(self.max_delivery_attempts, dead_lettered=True)
        logger.error(
            f"Notification dead-lettered for subscriber {subscription.id}",
            extra_fields={
                "topic": notification.topic.value,
                "event_id": notification.event.id,
                "error": str(last_error),
            },
        )
        return False

    def get_stats(self) -> Dict[str, Any]:
        """Channel delivery statistics."""
        return {
            "subscribers": len(self._subscriptions),
            "published": self._published,
            "deliveries": self._deliveries,
            "retries": self._retries,
            "dead_letters": self._dead_lettered,
            "dead_letters_retained": len(self._dead_letters),
        }
