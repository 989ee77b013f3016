"""Event handlers for Orders domain events."""

from __future__ import annotations

import structlog
from django.conf import settings
from django.db import transaction

from modules.orders.events import OrderCreated, OrderStatusChanged, PackingStarted
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class OrderCreatedHandler(IEventHandler[OrderCreated]):
    def handle(self, event: OrderCreated) -> None:
        logger.info(
            "order.event.created",
            order_id=str(event.aggregate_id),
            status=event.status,
        )


class OrderStatusChangedHandler(IEventHandler[OrderStatusChanged]):
    def handle(self, event: OrderStatusChanged) -> None:
        logger.info(
            "order.event.status_changed",
            order_id=str(event.aggregate_id),
            old_status=event.old_status,
            new_status=event.new_status,
            manual=event.manual,
            source_event=event.source_event,
        )


class PackingStartedHandler(IEventHandler[PackingStarted]):
    """Queues the manager e-mail once the packing transition has committed.

    A broker failure is logged and dropped: the committed status change is
    never undone because a notification could not be queued.
    """

    def handle(self, event: PackingStarted) -> None:
        if not settings.ORDERS_NOTIFY_MANAGERS_ON_PACKING:
            return
        order_id = str(event.aggregate_id)
        transaction.on_commit(lambda: self._enqueue(order_id))

    @staticmethod
    def _enqueue(order_id: str) -> None:
        from modules.orders.tasks import notify_managers_order_packing

        try:
            notify_managers_order_packing.delay(order_id)
        except Exception:
            logger.exception("order.packing_notification_enqueue_failed", order_id=order_id)
        else:
            logger.info("order.packing_notification_queued", order_id=order_id)


order_created_handler = OrderCreatedHandler()
order_status_changed_handler = OrderStatusChangedHandler()
packing_started_handler = PackingStartedHandler()
