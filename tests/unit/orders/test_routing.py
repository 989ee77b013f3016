"""Unit tests for the business event router.

The transition service is mocked: these tests pin the routing table, the
guards and the no-op policy, not the transition itself.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from django.utils import timezone

from modules.billing.models import Payment, PaymentStatus
from modules.orders.constants import BillingFrequency, OrderStatus, OrderType
from modules.orders.exceptions import InvalidTransition
from modules.orders.routing import ROUTING_RULES, BusinessEventRouter
from modules.orders.services import StatusTransitionService
from modules.production.models import Crop, CropPlan, CropStage

pytestmark = pytest.mark.unit


@pytest.fixture()
def transitions():
    return MagicMock(spec=StatusTransitionService)


@pytest.fixture()
def router(transitions):
    return BusinessEventRouter(transitions)


@pytest.fixture()
def crop_order(make_order, product):
    return make_order(
        status=OrderStatus.CONFIRMED,
        items=[(product, Decimal("2"), Decimal("12.00"))],
    )


def add_plan(order, product, planted=False, stage=CropStage.SOAKING):
    plan = CropPlan.objects.create(
        order=order,
        product=product,
        trays_needed=1,
        plant_by_date=date(2025, 1, 1),
        expected_harvest_date=date(2025, 1, 10),
    )
    Crop.objects.create(
        order=order,
        crop_plan=plan,
        stage=stage,
        planted_at=timezone.now() if planted else None,
    )
    return plan


class TestRoutingTable:
    def test_every_rule_targets_a_known_status(self):
        for rule in ROUTING_RULES:
            assert rule.target in OrderStatus.values

    def test_event_names_are_unique(self, router):
        assert len(router.events) == len(ROUTING_RULES)

    @pytest.mark.parametrize(
        "event, target",
        [
            ("order.confirmed", OrderStatus.CONFIRMED),
            ("harvest.completed", OrderStatus.PACKING),
            ("delivery.started", OrderStatus.OUT_FOR_DELIVERY),
            ("delivery.completed", OrderStatus.DELIVERED),
        ],
    )
    def test_unguarded_events_request_their_target(
        self, router, transitions, make_order, event, target
    ):
        order = make_order()
        router.handle_business_event(order, event)

        transitions.transition.assert_called_once()
        args, _ = transitions.transition.call_args
        assert args[0] == order.pk
        assert args[1] == target

    def test_router_transitions_are_not_manual(self, router, transitions, make_order):
        order = make_order()
        router.handle_business_event(order, "delivery.completed")

        context = transitions.transition.call_args.args[2]
        assert context.manual is False
        assert context.source_event == "delivery.completed"
        assert "delivery.completed" in context.notes


class TestNoOps:
    def test_unknown_event_is_ignored(self, router, transitions, make_order):
        assert router.handle_business_event(make_order(), "crop.exploded") is None
        transitions.transition.assert_not_called()

    def test_registry_rejection_is_swallowed(self, router, transitions, make_order):
        transitions.transition.side_effect = InvalidTransition(
            OrderStatus.DELIVERED, OrderStatus.PACKING
        )
        order = make_order(status=OrderStatus.DELIVERED)

        assert router.handle_business_event(order, "harvest.completed") is None

    def test_returns_the_moved_order(self, router, transitions, make_order):
        order = make_order()
        transitions.transition.return_value = order

        assert router.handle_business_event(order, "order.confirmed") is order


class TestGuards:
    def test_planting_waits_for_every_plan(self, router, transitions, crop_order, product):
        add_plan(crop_order, product, planted=True)
        add_plan(crop_order, product, planted=False)

        assert router.handle_business_event(crop_order, "crop.planted") is None
        transitions.transition.assert_not_called()

    def test_planting_moves_once_every_plan_is_planted(
        self, router, transitions, crop_order, product
    ):
        add_plan(crop_order, product, planted=True)
        add_plan(crop_order, product, planted=True)

        router.handle_business_event(crop_order, "crop.planted")
        assert transitions.transition.call_args.args[1] == OrderStatus.GROWING

    def test_planting_without_plans_waits(self, router, transitions, crop_order):
        router.handle_business_event(crop_order, "crop.planted")
        transitions.transition.assert_not_called()

    def test_ready_requires_every_crop_in_light(self, router, transitions, crop_order, product):
        add_plan(crop_order, product, planted=True, stage=CropStage.LIGHT)
        add_plan(crop_order, product, planted=True, stage=CropStage.BLACKOUT)

        router.handle_business_event(crop_order, "crops.ready")
        transitions.transition.assert_not_called()

    def test_packing_completed_waits_for_payment(self, router, transitions, make_order):
        order = make_order(status=OrderStatus.PACKING, order_type=OrderType.WEBSITE)

        router.handle_business_event(order, "packing.completed")
        transitions.transition.assert_not_called()

    def test_packing_completed_for_periodic_billing(self, router, transitions, make_order):
        order = make_order(
            status=OrderStatus.PACKING,
            order_type=OrderType.B2B,
            billing_frequency=BillingFrequency.MONTHLY,
        )

        router.handle_business_event(order, "packing.completed")
        assert transitions.transition.call_args.args[1] == OrderStatus.READY_FOR_DELIVERY

    def test_payment_received_requires_packing(self, router, transitions, make_order):
        order = make_order(status=OrderStatus.CONFIRMED)
        Payment.objects.create(
            order=order, amount=Decimal("10.00"), status=PaymentStatus.COMPLETED
        )

        router.handle_business_event(order, "payment.received")
        transitions.transition.assert_not_called()

    def test_payment_received_when_packed_and_paid(self, router, transitions, make_order):
        order = make_order(status=OrderStatus.PACKING)
        Payment.objects.create(
            order=order, amount=Decimal("10.00"), status=PaymentStatus.COMPLETED
        )

        router.handle_business_event(order, "payment.received")
        assert transitions.transition.call_args.args[1] == OrderStatus.READY_FOR_DELIVERY

    def test_guard_sees_fresh_state(self, router, transitions, make_order):
        order = make_order(status=OrderStatus.CONFIRMED)
        stale = type(order).objects.get(pk=order.pk)
        type(order).objects.filter(pk=order.pk).update(status=OrderStatus.PACKING)
        Payment.objects.create(
            order=order, amount=Decimal("10.00"), status=PaymentStatus.COMPLETED
        )

        router.handle_business_event(stale, "payment.received")
        transitions.transition.assert_called_once()
