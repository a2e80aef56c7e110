"""Event bridge: POS events in, universal transactions and journals out."""

from .channel import DeadLetter, EventChannel, Subscription
from .events import Notification, NotificationTopic, POSEvent, POSEventType
from .orchestrator import AccountingBridge
from .posting import AutoPoster, PostingOutcome, ReviewGatedPoster
from .publisher import AccountingEventPublisher, build_publisher

__all__ = [
    "AccountingBridge",
    "AccountingEventPublisher",
    "AutoPoster",
    "DeadLetter",
    "EventChannel",
    "Notification",
    "NotificationTopic",
    "POSEvent",
    "POSEventType",
    "PostingOutcome",
    "ReviewGatedPoster",
    "Subscription",
    "build_publisher",
]
