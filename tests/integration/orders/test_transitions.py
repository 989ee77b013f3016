"""Integration tests for ``StatusTransitionService``.

Covers:
- Valid transitions persist status, history, audit entry and outbox row.
- Invalid transitions leave the order untouched.
- Guards (production, harvest, payment).
- Compare-and-swap conflicts and bounded retries.
- Notifications for notifiable statuses.
- Bulk transitions and ``valid_next_statuses``.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from modules.billing.models import Payment, PaymentStatus
from modules.core.models import AuditEntry, OutboxEvent
from modules.orders.constants import BillingFrequency, OrderStatus, OrderType, Stage
from modules.orders.dtos import TransitionContext
from modules.orders.exceptions import (
    ConcurrentTransition,
    InvalidTransition,
    OrderNotFound,
    UnknownStatus,
)
from modules.orders.models import Order, OrderStatusHistory
from modules.orders.services import StatusTransitionService
from modules.production.models import Crop, CropStage

pytestmark = pytest.mark.integration


# ---------------------------------------------------------------------------
# Single transitions
# ---------------------------------------------------------------------------


class TestTransition:
    def test_valid_transition_persists(self, transition_service, make_order, user):
        order = make_order()

        result = transition_service.transition(
            order.id,
            OrderStatus.CONFIRMED,
            TransitionContext(notes="Phoned in", actor_id=user.pk),
        )

        assert result.status == OrderStatus.CONFIRMED
        assert result.side_effect_failures == []
        order.refresh_from_db()
        assert order.status == OrderStatus.CONFIRMED
        assert order.confirmed_at is not None

    def test_history_records_stage_actor_and_source(self, transition_service, make_order, user):
        order = make_order()
        transition_service.transition(
            order.id,
            OrderStatus.CONFIRMED,
            TransitionContext(notes="Phoned in", actor_id=user.pk),
        )

        history = OrderStatusHistory.objects.get(order=order)
        assert history.old_status == OrderStatus.PENDING
        assert history.new_status == OrderStatus.CONFIRMED
        assert history.old_stage == Stage.PRE_PRODUCTION
        assert history.new_stage == Stage.PRE_PRODUCTION
        assert history.actor_id == user.pk
        assert history.notes == "Phoned in"
        assert history.manual is True

    def test_event_driven_history(self, transition_service, make_order):
        order = make_order(status=OrderStatus.CONFIRMED)
        transition_service.transition(
            order.id,
            OrderStatus.PACKING,
            TransitionContext(manual=False, source_event="harvest.completed"),
        )

        history = OrderStatusHistory.objects.get(order=order)
        assert history.manual is False
        assert history.source_event == "harvest.completed"
        assert history.new_stage == Stage.FULFILLMENT

    def test_audit_entry_recorded(self, transition_service, make_order):
        order = make_order()
        transition_service.transition(order.id, OrderStatus.CONFIRMED)

        entry = AuditEntry.objects.get(label="order.status_changed")
        assert entry.entity_id == str(order.id)
        assert entry.old_value == {"status": "pending", "stage": "pre_production"}
        assert entry.new_value == {"status": "confirmed", "stage": "pre_production"}

    def test_status_changed_event_in_outbox(self, transition_service, make_order):
        order = make_order()
        transition_service.transition(order.id, OrderStatus.CONFIRMED)

        event = OutboxEvent.objects.get(event_type="OrderStatusChanged")
        assert event.aggregate_id == str(order.id)
        assert event.topic == "orders"
        assert event.payload["old_status"] == "pending"
        assert event.payload["new_status"] == "confirmed"

    def test_invalid_transition_leaves_order_untouched(self, transition_service, make_order):
        order = make_order()

        with pytest.raises(InvalidTransition) as exc_info:
            transition_service.transition(order.id, OrderStatus.DELIVERED)

        assert exc_info.value.from_status == OrderStatus.PENDING
        assert exc_info.value.to_status == OrderStatus.DELIVERED
        order.refresh_from_db()
        assert order.status == OrderStatus.PENDING
        assert not OrderStatusHistory.objects.filter(order=order).exists()
        assert not OutboxEvent.objects.filter(event_type="OrderStatusChanged").exists()

    def test_final_status_is_frozen(self, transition_service, make_order):
        order = make_order(status=OrderStatus.CANCELLED)
        with pytest.raises(InvalidTransition):
            transition_service.transition(order.id, OrderStatus.PENDING)

    def test_unknown_target(self, transition_service, make_order):
        with pytest.raises(UnknownStatus):
            transition_service.transition(make_order().id, "completed")

    def test_unknown_order(self, transition_service):
        with pytest.raises(OrderNotFound):
            transition_service.transition(uuid4(), OrderStatus.CONFIRMED)

    def test_soft_deleted_order_is_not_found(self, transition_service, make_order):
        order = make_order()
        order.delete()
        with pytest.raises(OrderNotFound):
            transition_service.transition(order.id, OrderStatus.CONFIRMED)

    def test_full_lifecycle_for_periodic_billing(self, transition_service, make_order):
        order = make_order(order_type=OrderType.B2B, billing_frequency=BillingFrequency.WEEKLY)
        path = [
            OrderStatus.CONFIRMED,
            OrderStatus.PACKING,
            OrderStatus.READY_FOR_DELIVERY,
            OrderStatus.OUT_FOR_DELIVERY,
            OrderStatus.DELIVERED,
        ]
        for target in path:
            transition_service.transition(order.id, target)

        order.refresh_from_db()
        assert order.status == OrderStatus.DELIVERED
        assert order.delivered_at is not None
        assert OrderStatusHistory.objects.filter(order=order).count() == len(path)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


class TestGuards:
    def test_crop_order_cannot_skip_production(self, transition_service, make_order, product):
        order = make_order(
            status=OrderStatus.CONFIRMED, items=[(product, 2, "12.00")]
        )
        with pytest.raises(InvalidTransition, match="through production"):
            transition_service.transition(order.id, OrderStatus.PACKING)

    def test_packing_requires_harvested_crops(self, transition_service, make_order, product):
        order = make_order(status=OrderStatus.HARVESTING, items=[(product, 2, "12.00")])
        Crop.objects.create(order=order, stage=CropStage.HARVESTING)

        with pytest.raises(InvalidTransition, match="harvested"):
            transition_service.transition(order.id, OrderStatus.PACKING)

    def test_unpaid_website_order_cannot_be_ready(self, transition_service, make_order):
        order = make_order(status=OrderStatus.PACKING, order_type=OrderType.WEBSITE)

        with pytest.raises(InvalidTransition, match="paid"):
            transition_service.transition(order.id, OrderStatus.READY_FOR_DELIVERY)

        Payment.objects.create(
            order=order, amount=Decimal("10.00"), status=PaymentStatus.COMPLETED
        )
        result = transition_service.transition(order.id, OrderStatus.READY_FOR_DELIVERY)
        assert result.status == OrderStatus.READY_FOR_DELIVERY


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrency:
    def test_lost_race_revalidates_against_new_status(
        self, transition_service, order_repository, make_order
    ):
        order = make_order()
        real_cas = order_repository.compare_and_set_status
        calls = []

        def racing_cas(order_id, expected, new_status):
            calls.append(expected)
            if len(calls) == 1:
                # Another writer confirms the order between our read and write.
                Order.objects.filter(id=order_id).update(status=OrderStatus.CONFIRMED)
            return real_cas(order_id, expected, new_status)

        with patch.object(order_repository, "compare_and_set_status", side_effect=racing_cas):
            result = transition_service.transition(order.id, OrderStatus.DRAFT)

        assert calls == [OrderStatus.PENDING, OrderStatus.CONFIRMED]
        assert result.status == OrderStatus.DRAFT
        history = OrderStatusHistory.objects.get(order=order)
        assert history.old_status == OrderStatus.CONFIRMED

    def test_gives_up_after_max_retries(
        self, transition_service, order_repository, make_order, settings
    ):
        settings.ORDER_TRANSITION_MAX_RETRIES = 3
        order = make_order()

        with patch.object(
            order_repository, "compare_and_set_status", return_value=False
        ) as cas:
            with pytest.raises(ConcurrentTransition):
                transition_service.transition(order.id, OrderStatus.CONFIRMED)

        assert cas.call_count == 3
        order.refresh_from_db()
        assert order.status == OrderStatus.PENDING
        assert not OrderStatusHistory.objects.filter(order=order).exists()

    def test_retry_rejects_when_new_status_forbids_target(
        self, transition_service, order_repository, make_order
    ):
        order = make_order()
        calls = []

        def lose_once(order_id, expected, new_status):
            calls.append(expected)
            Order.objects.filter(id=order_id).update(status=OrderStatus.CANCELLED)
            return False

        with patch.object(order_repository, "compare_and_set_status", side_effect=lose_once):
            with pytest.raises(InvalidTransition):
                transition_service.transition(order.id, OrderStatus.CONFIRMED)

        assert calls == [OrderStatus.PENDING]


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestNotifications:
    @pytest.fixture()
    def sink(self):
        return MagicMock()

    @pytest.fixture()
    def service(self, order_repository, sink):
        return StatusTransitionService(order_repository, notification_sink=sink)

    def test_confirmed_is_a_success(self, service, sink, make_order):
        order = make_order()
        service.transition(order.id, OrderStatus.CONFIRMED)

        kind, title, body = sink.notify.call_args.args
        assert kind == "success"
        assert order.order_number in title

    def test_cancelled_is_a_warning(self, service, sink, make_order):
        service.transition(make_order().id, OrderStatus.CANCELLED)
        assert sink.notify.call_args.args[0] == "warning"

    def test_non_notifiable_status_is_silent(self, service, sink, make_order):
        service.transition(make_order().id, OrderStatus.DRAFT)
        sink.notify.assert_not_called()


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------


class TestBulkTransition:
    def test_each_order_lands_in_one_bucket(self, transition_service, make_order, make_template):
        ok = make_order()
        bad = make_order(status=OrderStatus.PACKING)
        final = make_order(status=OrderStatus.DELIVERED)
        template = make_template()
        missing = str(uuid4())

        result = transition_service.bulk_transition(
            [ok.id, bad.id, final.id, template.id, missing], OrderStatus.CONFIRMED
        )

        assert result.successful == [str(ok.id)]
        assert {f.order_id: f.code for f in result.failed} == {
            str(bad.id): "invalid_transition",
            missing: "order_not_found",
        }
        assert {s.order_id for s in result.skipped} == {str(final.id), str(template.id)}
        assert result.total == 5

    def test_duplicates_are_processed_once(self, transition_service, make_order):
        order = make_order()
        result = transition_service.bulk_transition([order.id, order.id], OrderStatus.CONFIRMED)
        assert result.successful == [str(order.id)]
        assert result.total == 1

    def test_unknown_target_raises(self, transition_service, make_order):
        with pytest.raises(UnknownStatus):
            transition_service.bulk_transition([make_order().id], "completed")

    def test_one_failure_does_not_stop_the_rest(self, transition_service, make_order):
        orders = [make_order(), make_order(status=OrderStatus.GROWING), make_order()]
        result = transition_service.bulk_transition(
            [o.id for o in orders], OrderStatus.CONFIRMED
        )
        assert len(result.successful) == 2
        assert len(result.failed) == 1


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_valid_next_statuses_sorted(self, transition_service, make_order):
        order = make_order()
        assert transition_service.valid_next_statuses(order) == [
            "draft",
            "confirmed",
            "cancelled",
        ]

    def test_valid_next_statuses_apply_guards(self, transition_service, make_order, product):
        order = make_order(status=OrderStatus.CONFIRMED, items=[(product, 1, "12.00")])
        assert "packing" not in transition_service.valid_next_statuses(order)
        assert "growing" in transition_service.valid_next_statuses(order)

    def test_final_order_has_no_next_statuses(self, transition_service, make_order):
        assert transition_service.valid_next_statuses(make_order(status="delivered")) == []

    def test_status_history_newest_first(self, transition_service, make_order):
        order = make_order()
        transition_service.transition(order.id, OrderStatus.CONFIRMED)
        transition_service.transition(order.id, OrderStatus.PENDING)

        statuses = [h.new_status for h in transition_service.status_history(order)]
        assert statuses == [OrderStatus.PENDING, OrderStatus.CONFIRMED]
