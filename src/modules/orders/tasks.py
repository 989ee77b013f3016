"""Asynchronous tasks of the orders module."""

import structlog
from celery import shared_task
from django.core.mail import mail_managers

from modules.orders.models import Order

logger = structlog.get_logger(__name__)


@shared_task(name="orders.notify_managers_order_packing")
def notify_managers_order_packing(order_id: str) -> dict:
    """E-mail the site managers that an order has entered packing."""
    order = (
        Order.objects.select_related("customer")
        .prefetch_related("items__product")
        .filter(id=order_id)
        .first()
    )
    if order is None:
        logger.warning("order.packing_notification_skipped", order_id=order_id)
        return {"status": "skipped", "order_id": order_id}

    lines = [
        f"Order {order.order_number} for {order.customer.name} is being packed.",
        f"Delivery date: {order.delivery_date or 'not set'}",
        "",
    ]
    lines.extend(
        f"- {item.product.name}: {item.quantity}" for item in order.items.all()
    )
    mail_managers(
        subject=f"Order {order.order_number} is being packed",
        message="\n".join(lines),
    )
    logger.info("order.packing_notification_sent", order_id=order_id)
    return {"status": "sent", "order_id": order_id}
