"""
Event Publisher and Channel Tests

Publisher lifecycle, statistics, outcome notifications and the channel's
at-least-once delivery with dead-lettering.
"""

import asyncio
from decimal import Decimal

import pytest

from core.errors import NotInitializedError, UnknownEventTypeError
from core.models.canonical import RefundProcessed
from core.observability.metrics import get_metrics
from bridge import EventChannel, Notification, NotificationTopic, POSEvent, build_publisher


ORG = "org-test"


@pytest.fixture
def publisher(config, audit):
    publisher = build_publisher(config, audit=audit)
    publisher.initialize(ORG)
    return publisher


def notification(topic=NotificationTopic.SUCCEEDED):
    event = POSEvent(type="order.completed", data={}, organization_id=ORG)
    return Notification(topic=topic, event=event)


class TestLifecycle:
    """initialize / cleanup."""

    def test_publish_before_initialize_raises(self, config, make_order):
        publisher = build_publisher(config)
        with pytest.raises(NotInitializedError):
            asyncio.run(publisher.publish_order_completed(make_order()))

    def test_reinitialize_same_org_is_a_no_op(self, publisher, make_order):
        asyncio.run(publisher.publish_order_completed(make_order()))
        publisher.initialize(ORG)

        assert publisher.organization_id == ORG
        assert publisher.get_stats()["total_events"] == 1

    def test_rebinding_switches_organization_and_keeps_counters(self, publisher, make_order):
        asyncio.run(publisher.publish_order_completed(make_order()))
        publisher.initialize("org-other")

        assert publisher.bridge.organization_id == "org-other"
        assert publisher.get_stats()["succeeded"] == 1

        result = asyncio.run(publisher.publish_order_completed(make_order()))
        assert result.success is False

    def test_cleanup(self, publisher):
        publisher.cleanup()
        assert not publisher.initialized
        assert not publisher.bridge.initialized


class TestPublishing:
    """Outcome notifications and statistics."""

    def test_success_notification(self, publisher, make_order):
        received = []
        publisher.subscribe(received.append)

        result = asyncio.run(publisher.publish_order_completed(make_order(), actor_id="cashier-1"))

        assert result.success
        assert [n.topic for n in received] == [NotificationTopic.SUCCEEDED]
        assert received[0].result == result
        assert received[0].event.actor_id == "cashier-1"
        assert received[0].event.organization_id == ORG

    def test_failed_result_notification(self, publisher, make_order):
        failures = []
        publisher.subscribe(failures.append, topics=[NotificationTopic.FAILED])

        asyncio.run(publisher.publish_order_completed(make_order()))
        result = asyncio.run(publisher.publish_order_completed(make_order()))

        assert result.success is False
        assert len(failures) == 1
        assert failures[0].result == result
        assert "already recorded" in failures[0].error

    def test_exception_is_reraised_after_failed_notification(self, publisher):
        failures = []
        publisher.subscribe(failures.append, topics=[NotificationTopic.FAILED])

        with pytest.raises(UnknownEventTypeError):
            asyncio.run(publisher.publish("order.teleported", {}))

        assert len(failures) == 1
        assert failures[0].result is None
        assert "order.teleported" in failures[0].error
        assert publisher.get_stats()["failed"] == 1

    def test_stats(self, publisher, make_order):
        asyncio.run(publisher.publish_order_completed(make_order()))
        asyncio.run(publisher.publish_refund_processed(
            RefundProcessed(order_id="ORD-1", refund_amount=Decimal("10"), reason="Spilled", organization_id=ORG)
        ))
        asyncio.run(publisher.publish_order_completed(make_order()))

        stats = publisher.get_stats()

        assert stats["organization_id"] == ORG
        assert stats["total_events"] == 3
        assert stats["events_by_type"] == {"order.completed": 2, "refund.processed": 1}
        assert stats["succeeded"] == 2
        assert stats["failed"] == 1
        assert stats["last_event_at"] is not None
        assert stats["channel"]["published"] == 3

    def test_publish_accepts_raw_payloads(self, publisher, make_order):
        data = make_order().model_dump(mode="json", by_alias=True)
        result = asyncio.run(publisher.publish("order.completed", data))
        assert result.success

    def test_unsubscribe(self, publisher, make_order):
        received = []
        sub_id = publisher.subscribe(received.append)
        assert publisher.unsubscribe(sub_id) is True

        asyncio.run(publisher.publish_order_completed(make_order()))
        assert received == []


class TestEventChannel:
    """At-least-once delivery."""

    def test_topic_filter(self):
        channel = EventChannel()
        succeeded, everything = [], []
        channel.subscribe(succeeded.append, topics=["accounting.succeeded"])
        channel.subscribe(everything.append)

        asyncio.run(channel.publish(notification(NotificationTopic.SUCCEEDED)))
        asyncio.run(channel.publish(notification(NotificationTopic.FAILED)))

        assert len(succeeded) == 1
        assert len(everything) == 2

    def test_flaky_subscriber_is_retried(self):
        channel = EventChannel(max_delivery_attempts=3)
        calls = []

        def flaky(n):
            calls.append(n)
            if len(calls) < 3:
                raise ConnectionError("listener busy")

        channel.subscribe(flaky)
        delivered = asyncio.run(channel.publish(notification()))

        assert delivered == 1
        assert len(calls) == 3
        assert channel.dead_letters == []
        assert channel.get_stats()["retries"] == 2
        assert get_metrics().get_summary()["delivery"] == {"delivered": 1, "retries": 2, "dead_letters": 0}

    def test_exhausted_subscriber_is_dead_lettered(self):
        channel = EventChannel(max_delivery_attempts=2)
        healthy = []

        def broken(_):
            raise RuntimeError("always down")

        sub_id = channel.subscribe(broken)
        channel.subscribe(healthy.append)
        delivered = asyncio.run(channel.publish(notification()))

        assert delivered == 1
        assert len(healthy) == 1
        [dead] = channel.dead_letters
        assert dead.subscription_id == sub_id
        assert dead.attempts == 2
        assert dead.error == "always down"
        assert dead.to_dict()["topic"] == "accounting.succeeded"

    def test_dead_letters_are_capped_and_drained(self):
        channel = EventChannel(max_delivery_attempts=1, max_dead_letters=2)

        def broken(_):
            raise RuntimeError("always down")

        channel.subscribe(broken)
        for _ in range(3):
            asyncio.run(channel.publish(notification()))

        assert len(channel.dead_letters) == 2
        assert channel.get_stats()["dead_letters"] == 3
        assert channel.get_stats()["dead_letters_retained"] == 2

        drained = channel.drain_dead_letters()

        assert len(drained) == 2
        assert channel.dead_letters == []
        assert channel.get_stats()["dead_letters"] == 3

    def test_async_subscriber(self):
        channel = EventChannel()
        received = []

        async def listener(n):
            await asyncio.sleep(0)
            received.append(n.topic)

        channel.subscribe(listener)
        asyncio.run(channel.publish(notification(NotificationTopic.FAILED)))

        assert received == [NotificationTopic.FAILED]

    def test_unsubscribe_by_listener(self):
        channel = EventChannel()
        received = []
        channel.subscribe(received.append)
        channel.subscribe(received.append, topics=[NotificationTopic.FAILED])

        assert channel.unsubscribe(received.append) is True
        assert channel.subscriber_count == 0

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            EventChannel(max_delivery_attempts=0)
