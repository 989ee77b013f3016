"""Integration tests for the cascades that follow a status change."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import patch

import pytest
from django.core import mail
from django.utils import timezone

from modules.billing.models import Invoice, InvoiceStatus, Payment, PaymentStatus
from modules.core.models import OutboxEvent
from modules.orders import side_effects
from modules.orders.constants import (
    CROP_CANCELLATION_REASON,
    BillingFrequency,
    OrderStatus,
    OrderType,
)
from modules.orders.models import Order
from modules.production.models import Crop, CropStage

pytestmark = pytest.mark.integration


@pytest.fixture()
def crop_order(make_order, product):
    return make_order(status=OrderStatus.GROWING, items=[(product, 2, "12.00")])


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_cancels_open_crops_only(self, transition_service, crop_order):
        growing = Crop.objects.create(order=crop_order, stage=CropStage.BLACKOUT)
        harvested = Crop.objects.create(order=crop_order, stage=CropStage.HARVESTED)

        transition_service.transition(crop_order.id, OrderStatus.CANCELLED)

        growing.refresh_from_db()
        harvested.refresh_from_db()
        assert growing.cancelled_at is not None
        assert growing.cancellation_reason == CROP_CANCELLATION_REASON
        assert harvested.cancelled_at is None

    def test_already_cancelled_crops_keep_their_reason(self, transition_service, crop_order):
        crop = Crop.objects.create(
            order=crop_order,
            stage=CropStage.GERMINATION,
            cancelled_at=timezone.now(),
            cancellation_reason="Mould",
        )

        transition_service.transition(crop_order.id, OrderStatus.CANCELLED)

        crop.refresh_from_db()
        assert crop.cancellation_reason == "Mould"

    def test_stamps_cancelled_at(self, transition_service, make_order):
        order = make_order()
        transition_service.transition(order.id, OrderStatus.CANCELLED)
        order.refresh_from_db()
        assert order.cancelled_at is not None

    def test_pending_invoice_is_cancelled(self, transition_service, make_order):
        order = make_order()
        invoice = Invoice.objects.create(
            order=order, customer=order.customer, status=InvoiceStatus.PENDING
        )

        transition_service.transition(order.id, OrderStatus.CANCELLED)

        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.CANCELLED

    def test_paid_invoice_is_untouched(self, transition_service, make_order):
        order = make_order()
        invoice = Invoice.objects.create(
            order=order, customer=order.customer, status=InvoiceStatus.PAID
        )

        transition_service.transition(order.id, OrderStatus.CANCELLED)

        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.PAID

    def test_cancelling_a_template_stops_recurrence(self, transition_service, make_template):
        template = make_template()

        transition_service.transition(template.id, OrderStatus.CANCELLED)

        template.refresh_from_db()
        assert template.status == OrderStatus.CANCELLED
        assert template.is_recurring_active is False


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


class TestDelivery:
    def test_paid_invoice_settled_on_delivery(self, transition_service, make_order):
        order = make_order(status=OrderStatus.OUT_FOR_DELIVERY)
        invoice = Invoice.objects.create(
            order=order, customer=order.customer, status=InvoiceStatus.SENT
        )
        Payment.objects.create(
            order=order, amount=Decimal("10.00"), status=PaymentStatus.COMPLETED
        )

        transition_service.transition(order.id, OrderStatus.DELIVERED)

        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_at is not None

    def test_unpaid_invoice_stays_open(self, transition_service, make_order):
        order = make_order(status=OrderStatus.OUT_FOR_DELIVERY)
        invoice = Invoice.objects.create(
            order=order, customer=order.customer, status=InvoiceStatus.SENT
        )

        transition_service.transition(order.id, OrderStatus.DELIVERED)

        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.SENT

    def test_stamps_delivered_at(self, transition_service, make_order):
        order = make_order(status=OrderStatus.READY_FOR_DELIVERY)
        transition_service.transition(order.id, OrderStatus.DELIVERED)
        order.refresh_from_db()
        assert order.delivered_at is not None


# ---------------------------------------------------------------------------
# Harvesting / packing
# ---------------------------------------------------------------------------


class TestHarvesting:
    def test_ready_crops_start_harvesting(self, transition_service, make_order, product):
        order = make_order(status=OrderStatus.READY_TO_HARVEST, items=[(product, 1, "12.00")])
        ready = Crop.objects.create(order=order, stage=CropStage.LIGHT)
        young = Crop.objects.create(order=order, stage=CropStage.BLACKOUT)

        transition_service.transition(order.id, OrderStatus.HARVESTING)

        ready.refresh_from_db()
        young.refresh_from_db()
        assert ready.stage == CropStage.HARVESTING
        assert young.stage == CropStage.BLACKOUT


class TestPackingNotification:
    @pytest.fixture()
    def packable(self, make_order):
        return make_order(
            status=OrderStatus.CONFIRMED,
            order_type=OrderType.B2B,
            billing_frequency=BillingFrequency.WEEKLY,
        )

    def test_managers_mailed_after_commit(
        self, transition_service, packable, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            transition_service.transition(packable.id, OrderStatus.PACKING)

        assert len(callbacks) == 1
        assert len(mail.outbox) == 1
        message = mail.outbox[0]
        assert packable.order_number in message.subject
        assert message.to == ["production@example.com"]
        assert OutboxEvent.objects.filter(event_type="PackingStarted").count() == 1

    def test_nothing_sent_before_commit(
        self, transition_service, packable, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            transition_service.transition(packable.id, OrderStatus.PACKING)

        assert len(callbacks) == 1
        assert mail.outbox == []

    def test_reentry_from_ready_for_delivery_announces_again(
        self, transition_service, packable, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            transition_service.transition(packable.id, OrderStatus.PACKING)
            transition_service.transition(packable.id, OrderStatus.READY_FOR_DELIVERY)
            transition_service.transition(packable.id, OrderStatus.PACKING)

        assert OutboxEvent.objects.filter(event_type="PackingStarted").count() == 2

    def test_setting_disables_notification(
        self, transition_service, packable, settings, django_capture_on_commit_callbacks
    ):
        settings.ORDERS_NOTIFY_MANAGERS_ON_PACKING = False
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            transition_service.transition(packable.id, OrderStatus.PACKING)

        assert callbacks == []
        assert mail.outbox == []

    def test_queue_failure_does_not_undo_packing(
        self, transition_service, packable, django_capture_on_commit_callbacks
    ):
        with patch("modules.orders.tasks.notify_managers_order_packing") as task:
            task.delay.side_effect = ConnectionError("broker down")
            with django_capture_on_commit_callbacks(execute=True):
                result = transition_service.transition(packable.id, OrderStatus.PACKING)

        assert result.status == OrderStatus.PACKING
        packable.refresh_from_db()
        assert packable.status == OrderStatus.PACKING


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


class TestFailureIsolation:
    def test_failed_effect_is_reported_not_rolled_back(self, transition_service, make_order):
        order = make_order()

        def boom(order, old_status):
            raise RuntimeError("invoice service down")

        boom.__name__ = "cancel_pending_invoice"
        effects = dict(side_effects.SIDE_EFFECTS)
        effects[OrderStatus.CANCELLED] = (side_effects.stamp_cancelled_at, boom)

        with patch.dict(side_effects.SIDE_EFFECTS, effects):
            result = transition_service.transition(order.id, OrderStatus.CANCELLED)

        assert result.status == OrderStatus.CANCELLED
        assert [f.effect for f in result.side_effect_failures] == ["cancel_pending_invoice"]
        assert "invoice service down" in result.side_effect_failures[0].message

        stored = Order.objects.get(id=order.id)
        assert stored.status == OrderStatus.CANCELLED
        assert stored.cancelled_at is not None

    def test_effect_writes_rolled_back_individually(self, transition_service, crop_order):
        crop = Crop.objects.create(order=crop_order, stage=CropStage.BLACKOUT)

        def half_done(order, old_status):
            order.crops.update(stage=CropStage.HARVESTED)
            raise RuntimeError("partial failure")

        effects = dict(side_effects.SIDE_EFFECTS)
        effects[OrderStatus.CANCELLED] = (half_done,)

        with patch.dict(side_effects.SIDE_EFFECTS, effects):
            transition_service.transition(crop_order.id, OrderStatus.CANCELLED)

        crop.refresh_from_db()
        assert crop.stage == CropStage.BLACKOUT
