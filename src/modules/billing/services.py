"""Billing services.

``PaymentService.record_payment`` is the billing side's entry point into
the order lifecycle: every completed payment is announced to the business
event router as ``payment.received``; the router decides whether the order
can move on to delivery.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from uuid import UUID

import structlog
from django.db import transaction
from django.utils import timezone

from modules.billing.models import Payment, PaymentMethod, PaymentStatus
from modules.orders.exceptions import OrderNotFound
from modules.orders.models import Order

if TYPE_CHECKING:
    from modules.orders.routing import BusinessEventRouter

logger = structlog.get_logger(__name__)


class PaymentService:
    def __init__(self, router: Optional[BusinessEventRouter] = None) -> None:
        if router is None:
            from modules.orders.routing import business_event_router

            router = business_event_router
        self._router = router

    @transaction.atomic
    def record_payment(
        self,
        order_id: UUID,
        amount: Decimal,
        method: str = PaymentMethod.INVOICE,
        status: str = PaymentStatus.COMPLETED,
        notes: str = "",
    ) -> Payment:
        """Store a payment and, when completed, feed ``payment.received``.

        Raises:
            OrderNotFound: the order does not exist.
        """
        order = Order.objects.alive().filter(id=order_id).first()
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")

        payment = Payment.objects.create(
            order=order,
            amount=amount,
            method=method,
            status=status,
            paid_at=timezone.now() if status == PaymentStatus.COMPLETED else None,
            notes=notes,
        )
        log = logger.bind(
            order_id=str(order.id), payment_id=str(payment.id), amount=str(amount)
        )
        log.info("payment.recorded", status=status)

        if status == PaymentStatus.COMPLETED:
            self._router.handle_business_event(
                order,
                "payment.received",
                {"payment_id": str(payment.id), "amount": str(amount)},
            )
        return payment
