"""Django ORM implementation of the Order repository.

Satisfies ``IOrderRepository`` using Django's QuerySet API.
All write operations are wrapped in ``transaction.atomic()`` to ensure
the Order aggregate (Order + OrderItems + OrderPackaging) is persisted
atomically.

Concurrency control on status updates combines ``select_for_update()``
with a compare-and-swap ``UPDATE ... WHERE status = <expected>``: the row
lock serialises writers on databases that support it, the CAS catches the
ones that do not.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.utils import timezone

from modules.core.models import OutboxEvent
from modules.orders.models import Order, OrderItem, OrderPackaging, OrderStatusHistory
from modules.orders.registry import status_registry
from modules.orders.repositories.interfaces import IOrderRepository
from shared.infrastructure.bus import event_bus

logger = structlog.get_logger(__name__)

_PREFETCH = ("items__product", "items__price_variation", "packaging", "status_history")


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items and packaging atomically.

        Every key of ``data`` other than ``items`` / ``packaging`` is passed
        to the ``Order`` constructor.
        """
        fields = dict(data)
        items = fields.pop("items", [])
        packaging = fields.pop("packaging", [])

        order = Order(**fields)
        order.save()

        for item_data in items:
            OrderItem(
                order=order,
                product_id=item_data["product_id"],
                price_variation_id=item_data.get("price_variation_id"),
                quantity=item_data["quantity"],
                unit_price=item_data["unit_price"],
            ).save()

        for pack_data in packaging:
            OrderPackaging.objects.create(
                order=order,
                packaging_type_id=pack_data["packaging_type_id"],
                quantity=pack_data.get("quantity", 1),
                notes=pack_data.get("notes", ""),
            )

        order.refresh_total()

        log = logger.bind(
            order_id=str(order.id),
            item_count=len(items),
            packaging_count=len(packaging),
        )
        log.info("order.created")

        return order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve a live order with eager-loaded relations.

        Returns ``None`` for non-existent, soft-deleted or invalid IDs.
        """
        try:
            return (
                Order.objects.alive()
                .select_related("customer")
                .prefetch_related(*_PREFETCH)
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve a live order with a row-level lock (SELECT FOR UPDATE).

        Must be called inside a transaction.  Returns ``None`` for
        non-existent or invalid IDs.
        """
        try:
            return (
                Order.objects.alive()
                .select_for_update()
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> models.QuerySet:
        """List live orders with optional filters and eager-loaded relations.

        Returns a QuerySet so the API layer can keep filtering / paginating.
        """
        queryset = (
            Order.objects.alive()
            .select_related("customer")
            .prefetch_related(*_PREFETCH)
        )
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return (
            Order.objects.select_related("customer")
            .prefetch_related(*_PREFETCH)
            .filter(idempotency_key=key)
            .first()
        )

    def exists_generated(self, template_id: UUID, delivery_date: date) -> bool:
        return Order.objects.filter(
            parent_recurring_order_id=template_id,
            delivery_date=delivery_date,
        ).exists()

    # ------------------------------------------------------------------
    # Save / Delete (IRepository contract)
    # ------------------------------------------------------------------

    @transaction.atomic
    def save(self, entity: Order) -> Order:
        """Persist an order and hand its collected events to outbox + bus."""
        entity.save()

        events = entity.domain_events
        for event in events:
            OutboxEvent.objects.create(
                event_type=event.event_name,
                aggregate_id=str(event.aggregate_id),
                payload=_serialize_event_payload(event),
                topic=event.topic,
            )
        entity.clear_domain_events()
        event_bus.publish_all(events)

        logger.info("order.saved", order_id=str(entity.id), event_count=len(events))
        return entity

    @transaction.atomic
    def delete(self, id: str) -> bool:
        """Soft-delete an order by ID."""
        order = self.get_by_id(id)
        if not order:
            return False
        order.delete()
        logger.info("order.soft_deleted", order_id=str(id))
        return True

    # ------------------------------------------------------------------
    # Status writes
    # ------------------------------------------------------------------

    def compare_and_set_status(
        self, order_id: UUID, expected: str, new_status: str
    ) -> bool:
        updated = Order.objects.filter(id=order_id, status=expected).update(
            status=new_status, updated_at=timezone.now()
        )
        return updated == 1

    @transaction.atomic
    def add_history(
        self,
        order_id: UUID,
        old_status: Optional[str],
        new_status: str,
        notes: str = "",
        actor_id: Optional[int] = None,
        source_event: Optional[str] = None,
        manual: bool = True,
    ) -> OrderStatusHistory:
        """Record a status change in the order's audit trail."""
        history = OrderStatusHistory(
            order_id=order_id,
            old_status=old_status,
            new_status=new_status,
            old_stage=status_registry.stage_of(old_status) if old_status else None,
            new_stage=status_registry.stage_of(new_status),
            actor_id=actor_id,
            notes=notes,
            source_event=source_event or "",
            manual=manual,
        )
        history.save()

        logger.info(
            "order.history_added",
            order_id=str(order_id),
            old_status=old_status,
            new_status=new_status,
        )
        return history


def _serialize_event_payload(event: Any) -> Dict[str, Any]:
    normalized = _normalize_for_json(event.to_payload())
    return json.loads(json.dumps(normalized))


def _normalize_for_json(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, list):
        return [_normalize_for_json(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize_for_json(val) for key, val in value.items()}
    return value
