"""Business event router.

Production, billing and delivery report what happened ("a crop was
planted", "a payment arrived"); the router decides whether that moves the
order forward.  The mapping is a flat table of ``RoutingRule`` rows: an
event name, the status it may lead to and an optional guard on the order.

A failing guard is backpressure (not enough has happened yet) and a
registry rejection means the order is already past that point; both are
silent no-ops so events can be delivered more than once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import structlog

from modules.orders.constants import OrderStatus
from modules.orders.dtos import TransitionContext
from modules.orders.exceptions import InvalidTransition
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import StatusTransitionService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RoutingRule:
    event: str
    target: str
    guard: Optional[Callable[[Order], bool]] = None
    description: str = ""

    def allows(self, order: Order) -> bool:
        return self.guard is None or self.guard(order)


ROUTING_RULES: Tuple[RoutingRule, ...] = (
    RoutingRule("order.confirmed", OrderStatus.CONFIRMED),
    RoutingRule(
        "crop.planted",
        OrderStatus.GROWING,
        guard=lambda order: order.all_crops_planted,
        description="every crop plan has a planted crop",
    ),
    RoutingRule(
        "crops.ready",
        OrderStatus.READY_TO_HARVEST,
        guard=lambda order: order.all_crops_ready,
        description="every crop is ready to harvest",
    ),
    RoutingRule("harvest.completed", OrderStatus.PACKING),
    RoutingRule(
        "packing.completed",
        OrderStatus.READY_FOR_DELIVERY,
        guard=lambda order: not order.requires_immediate_invoicing or order.is_paid,
        description="order is paid or invoiced later",
    ),
    RoutingRule(
        "payment.received",
        OrderStatus.READY_FOR_DELIVERY,
        guard=lambda order: order.status == OrderStatus.PACKING and order.is_paid,
        description="order is packed and paid",
    ),
    RoutingRule("delivery.started", OrderStatus.OUT_FOR_DELIVERY),
    RoutingRule("delivery.completed", OrderStatus.DELIVERED),
)


class BusinessEventRouter:
    def __init__(
        self,
        transition_service: StatusTransitionService,
        rules: Tuple[RoutingRule, ...] = ROUTING_RULES,
    ) -> None:
        self._transitions = transition_service
        self._rules: Mapping[str, RoutingRule] = {rule.event: rule for rule in rules}

    @property
    def events(self) -> Tuple[str, ...]:
        return tuple(self._rules)

    def handle_business_event(
        self,
        order: Order,
        event_name: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[Order]:
        """Feed *event_name* for *order*; return the moved order or ``None``."""
        log = logger.bind(order_id=str(order.pk), business_event=event_name)

        rule = self._rules.get(event_name)
        if rule is None:
            log.warning("order.event_unknown")
            return None

        # Guards must see what the caller just wrote (crops, payments).
        order = Order.objects.get(pk=order.pk)
        if not rule.allows(order):
            log.info(
                "order.event_guard_pending",
                current_status=order.status,
                guard=rule.description,
            )
            return None

        try:
            moved = self._transitions.transition(
                order.pk,
                rule.target,
                TransitionContext(
                    manual=False,
                    source_event=event_name,
                    notes=f"Triggered by {event_name}",
                ),
            )
        except InvalidTransition as exc:
            log.info(
                "order.event_ignored",
                current_status=order.status,
                target_status=rule.target,
                reason=exc.reason,
            )
            return None

        log.info("order.event_applied", target_status=rule.target, payload=payload or {})
        return moved


# Router used by production, billing and the API when none is injected
business_event_router = BusinessEventRouter(StatusTransitionService(OrderDjangoRepository()))
