"""Materialization of recurring templates into concrete orders.

The new order copies the template's commercial terms, packaging and line
quantities; every unit price is resolved again for the customer at
generation time so stale template prices never reach a real order.  Draft
crop plans for the new order are created in the same transaction.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

import structlog
from django.db import IntegrityError, transaction

from modules.orders.constants import OrderStatus
from modules.orders.events import OrderCreated
from modules.orders.exceptions import DuplicateGeneration, MaterializationFailure
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.repositories.interfaces import IOrderRepository
from modules.production.services import CropPlanGenerator
from shared.domain.ports import IPricingResolver

logger = structlog.get_logger(__name__)

GENERATION_SOURCE_EVENT = "recurrence.generated"


class OrderMaterializer:
    def __init__(
        self,
        order_repository: Optional[IOrderRepository] = None,
        pricing_resolver: Optional[IPricingResolver] = None,
        crop_planner: Optional[CropPlanGenerator] = None,
    ) -> None:
        if pricing_resolver is None:
            from modules.products.pricing import pricing_resolver
        self._repo = order_repository or OrderDjangoRepository()
        self._pricing = pricing_resolver
        self._crop_planner = crop_planner or CropPlanGenerator()

    def generate(self, template: Order, harvest_date: date, delivery_date: date) -> Order:
        """Create the pending order for *template* delivered on *delivery_date*.

        Raises:
            DuplicateGeneration: the template already has an order for that
                delivery date (lost a race against a concurrent pass).
            MaterializationFailure: pricing or persistence failed.
        """
        log = logger.bind(
            template_id=str(template.id),
            delivery_date=delivery_date.isoformat(),
        )
        try:
            with transaction.atomic():
                order = self._repo.create(
                    {
                        "customer_id": template.customer_id,
                        "status": OrderStatus.PENDING,
                        "order_type": template.order_type,
                        "billing_frequency": template.billing_frequency,
                        "requires_invoice": template.requires_invoice,
                        "notes": template.notes,
                        "is_recurring": False,
                        "parent_recurring_order": template,
                        "harvest_date": harvest_date,
                        "delivery_date": delivery_date,
                        "items": self._priced_items(template),
                        "packaging": [
                            {
                                "packaging_type_id": pack.packaging_type_id,
                                "quantity": pack.quantity,
                                "notes": pack.notes,
                            }
                            for pack in template.packaging.all()
                        ],
                    }
                )
                order.add_domain_event(
                    OrderCreated(
                        aggregate_id=order.id,
                        customer_id=str(template.customer_id),
                        status=order.status,
                    )
                )
                self._repo.save(order)
                self._repo.add_history(
                    order_id=order.id,
                    old_status=None,
                    new_status=order.status,
                    notes=f"Generated from recurring template {template.order_number}",
                    source_event=GENERATION_SOURCE_EVENT,
                    manual=False,
                )
                self._crop_planner.sync_order_plans(order)
        except IntegrityError as exc:
            if self._repo.exists_generated(template.id, delivery_date):
                log.info("recurrence.duplicate_detected")
                raise DuplicateGeneration(
                    f"Template {template.order_number} already generated an order "
                    f"for {delivery_date.isoformat()}."
                ) from exc
            log.exception("recurrence.materialization_failed")
            raise MaterializationFailure(
                f"Could not store order for template {template.order_number}: {exc}"
            ) from exc
        except Exception as exc:
            log.exception("recurrence.materialization_failed")
            raise MaterializationFailure(
                f"Could not materialize template {template.order_number}: {exc}"
            ) from exc

        log.info("recurrence.order_materialized", order_id=str(order.id))
        return order

    def _priced_items(self, template: Order) -> List[Dict[str, Any]]:
        customer = template.customer
        items = []
        for item in template.items.select_related("product", "price_variation"):
            items.append(
                {
                    "product_id": item.product_id,
                    "price_variation_id": item.price_variation_id,
                    "quantity": item.quantity,
                    "unit_price": self._pricing.price_for(
                        customer, item.product, item.price_variation
                    ),
                }
            )
        return items
