"""Cascades that follow a committed status change.

Each effect is keyed by the target status and receives the order (already
carrying its new status) and the status it left.  Timestamp stamps only set
attributes; the transition service persists the order after all effects
have run.  Effects touching other aggregates (crops, invoices) write
directly.

The transition service runs every effect in its own savepoint and turns
any exception into a ``SideEffectFailure``; an effect never undoes the
transition.
"""

from __future__ import annotations

from typing import Callable, Dict, Tuple

import structlog
from django.utils import timezone

from modules.billing.models import Invoice, InvoiceStatus
from modules.orders.constants import CROP_CANCELLATION_REASON, OrderStatus
from modules.orders.events import PackingStarted
from modules.orders.models import Order
from modules.production.models import CropStage
from modules.production.services import CropPlanGenerator

logger = structlog.get_logger(__name__)

SideEffect = Callable[[Order, str], None]


# ---------------------------------------------------------------------------
# confirmed
# ---------------------------------------------------------------------------


def stamp_confirmed_at(order: Order, old_status: str) -> None:
    if order.confirmed_at is None:
        order.confirmed_at = timezone.now()


def plan_crops(order: Order, old_status: str) -> None:
    CropPlanGenerator().sync_order_plans(order)


# ---------------------------------------------------------------------------
# cancelled
# ---------------------------------------------------------------------------


def stamp_cancelled_at(order: Order, old_status: str) -> None:
    order.cancelled_at = timezone.now()


def cancel_open_crops(order: Order, old_status: str) -> None:
    """Stop every crop still in the grow room; harvested crops are kept."""
    count = (
        order.crops.filter(cancelled_at__isnull=True)
        .exclude(stage=CropStage.HARVESTED)
        .update(
            cancelled_at=timezone.now(),
            cancellation_reason=CROP_CANCELLATION_REASON,
            updated_at=timezone.now(),
        )
    )
    if count:
        logger.info("order.crops_cancelled", order_id=str(order.id), count=count)


def stop_recurrence(order: Order, old_status: str) -> None:
    if order.is_recurring and order.is_recurring_active:
        order.is_recurring_active = False
        logger.info("order.recurrence_stopped", order_id=str(order.id))


def cancel_pending_invoice(order: Order, old_status: str) -> None:
    invoice = Invoice.objects.filter(order=order).first()
    if invoice is not None and invoice.status == InvoiceStatus.PENDING:
        invoice.cancel()


# ---------------------------------------------------------------------------
# delivered
# ---------------------------------------------------------------------------


def stamp_delivered_at(order: Order, old_status: str) -> None:
    order.delivered_at = timezone.now()


def settle_paid_invoice(order: Order, old_status: str) -> None:
    invoice = Invoice.objects.filter(order=order).first()
    if invoice is None or invoice.is_paid:
        return
    if invoice.status != InvoiceStatus.CANCELLED and order.is_paid:
        invoice.mark_as_paid()


# ---------------------------------------------------------------------------
# packing / harvesting
# ---------------------------------------------------------------------------


def announce_packing(order: Order, old_status: str) -> None:
    if old_status != OrderStatus.PACKING:
        order.add_domain_event(
            PackingStarted(aggregate_id=order.id, order_number=order.order_number)
        )


def start_harvesting_ready_crops(order: Order, old_status: str) -> None:
    count = (
        order.crops.filter(cancelled_at__isnull=True, stage=CropStage.LIGHT)
        .update(stage=CropStage.HARVESTING, updated_at=timezone.now())
    )
    logger.info("order.crops_harvesting", order_id=str(order.id), count=count)


SIDE_EFFECTS: Dict[str, Tuple[SideEffect, ...]] = {
    OrderStatus.CONFIRMED: (stamp_confirmed_at, plan_crops),
    OrderStatus.CANCELLED: (
        stamp_cancelled_at,
        cancel_open_crops,
        cancel_pending_invoice,
        stop_recurrence,
    ),
    OrderStatus.DELIVERED: (stamp_delivered_at, settle_paid_invoice),
    OrderStatus.PACKING: (announce_packing,),
    OrderStatus.HARVESTING: (start_harvesting_ready_crops,),
}


def effects_for(status: str) -> Tuple[SideEffect, ...]:
    return SIDE_EFFECTS.get(status, ())
