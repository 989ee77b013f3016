"""Unit tests for domain events and the in-memory event bus."""

from __future__ import annotations

from datetime import date
from uuid import uuid4

import pytest

from modules.orders.events import OrderStatusChanged, PackingStarted
from modules.recurrence.events import RecurringOrderGenerated
from shared.domain.events import DomainEventMixin
from shared.infrastructure.bus import InMemoryEventBus

pytestmark = pytest.mark.unit


class Recorder:
    def __init__(self):
        self.events = []

    def handle(self, event):
        self.events.append(event)


class Aggregate(DomainEventMixin):
    pass


class TestDomainEvent:
    def test_event_name_is_the_class_name(self):
        event = PackingStarted(aggregate_id=uuid4(), order_number="ORD-1")
        assert event.event_name == "PackingStarted"

    def test_topic_follows_the_bounded_context(self):
        assert OrderStatusChanged.topic == "orders"
        assert RecurringOrderGenerated.topic == "recurrence"

    def test_payload_carries_fields(self):
        order_id = uuid4()
        event = OrderStatusChanged(
            aggregate_id=order_id,
            old_status="pending",
            new_status="confirmed",
            manual=False,
            source_event="order.confirmed",
        )
        payload = event.to_payload()
        assert payload["aggregate_id"] == order_id
        assert payload["new_status"] == "confirmed"
        assert payload["source_event"] == "order.confirmed"

    def test_events_are_immutable(self):
        event = PackingStarted(aggregate_id=uuid4(), order_number="ORD-1")
        with pytest.raises(AttributeError):
            event.order_number = "ORD-2"


class TestDomainEventMixin:
    def test_collects_and_clears(self):
        aggregate = Aggregate()
        aggregate.add_domain_event(PackingStarted(aggregate_id=uuid4()))
        aggregate.add_domain_event(PackingStarted(aggregate_id=uuid4()))
        assert len(aggregate.domain_events) == 2

        aggregate.clear_domain_events()
        assert aggregate.domain_events == []

    def test_domain_events_returns_a_copy(self):
        aggregate = Aggregate()
        aggregate.domain_events.append(PackingStarted(aggregate_id=uuid4()))
        assert aggregate.domain_events == []


class TestInMemoryEventBus:
    def test_publish_reaches_subscribers_of_that_type(self):
        bus = InMemoryEventBus()
        packing, generated = Recorder(), Recorder()
        bus.subscribe(PackingStarted, packing)
        bus.subscribe(RecurringOrderGenerated, generated)

        bus.publish(PackingStarted(aggregate_id=uuid4()))

        assert len(packing.events) == 1
        assert generated.events == []

    def test_subscribe_is_idempotent(self):
        bus = InMemoryEventBus()
        recorder = Recorder()
        bus.subscribe(PackingStarted, recorder)
        bus.subscribe(PackingStarted, recorder)

        bus.publish(PackingStarted(aggregate_id=uuid4()))
        assert len(recorder.events) == 1

    def test_unsubscribe(self):
        bus = InMemoryEventBus()
        recorder = Recorder()
        bus.subscribe(PackingStarted, recorder)
        bus.unsubscribe(PackingStarted, recorder)

        bus.publish(PackingStarted(aggregate_id=uuid4()))
        assert recorder.events == []

    def test_publish_all_keeps_order(self):
        bus = InMemoryEventBus()
        recorder = Recorder()
        bus.subscribe(RecurringOrderGenerated, recorder)
        first = RecurringOrderGenerated(aggregate_id=uuid4(), delivery_date=date(2025, 1, 9))
        second = RecurringOrderGenerated(aggregate_id=uuid4(), delivery_date=date(2025, 1, 16))

        bus.publish_all([first, second])
        assert recorder.events == [first, second]
