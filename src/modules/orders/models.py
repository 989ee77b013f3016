"""Order, OrderItem, OrderPackaging and OrderStatusHistory models.

Business rules implemented:
- Status changes go through ``StatusTransitionService``; the model only
  exposes read-side helpers (stage, crop / payment predicates) used by the
  registry guards and the event router.
- Each status change generates an immutable history record.
- An order is exactly one of: recurring template, generated instance,
  standalone order.  A template never has a parent; a generated instance
  is never recurring itself.
- At most one generated order per template and delivery date (DB-level
  unique constraint backing the scheduler's duplicate guard).
- Order number auto-generated as human-readable identifier.
- OrderItem snapshots the unit price at creation time; negative prices
  (discount lines) and fractional quantities (weight-based goods) are valid.
- ``total_amount`` is a stored snapshot of ``calculate_total()``.
"""

from __future__ import annotations

import secrets
from decimal import Decimal
from typing import Any

import structlog
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Sum
from django.utils import timezone

from modules.core.models import BaseModel, SoftDeleteModel
from modules.orders.constants import (
    DEFAULT_RECURRING_INTERVAL,
    ORDER_NUMBER_MAX_RETRIES,
    BillingFrequency,
    OrderStatus,
    OrderType,
    RecurringFrequency,
    Stage,
)
from modules.orders.registry import status_registry
from shared.domain.events import DomainEventMixin

logger = structlog.get_logger(__name__)


class Order(DomainEventMixin, SoftDeleteModel):
    """Order aggregate root.

    ``order_number`` is a human-readable identifier auto-generated on first
    save (format: ``ORD-YYYYMMDD-XXXXXX``).  The UUIDv7 ``id`` is used for
    all internal references and API lookups.
    """

    order_number: models.CharField = models.CharField(
        max_length=20, unique=True, editable=False
    )
    customer: models.ForeignKey = models.ForeignKey(
        "customers.Customer",
        on_delete=models.PROTECT,
        related_name="orders",
    )
    status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )
    order_type: models.CharField = models.CharField(
        max_length=20,
        choices=OrderType.choices,
        default=OrderType.WEBSITE,
    )
    billing_frequency: models.CharField = models.CharField(
        max_length=20,
        choices=BillingFrequency.choices,
        default=BillingFrequency.IMMEDIATE,
    )
    requires_invoice: models.BooleanField = models.BooleanField(default=False)

    # Recurrence
    is_recurring: models.BooleanField = models.BooleanField(default=False)
    is_recurring_active: models.BooleanField = models.BooleanField(default=False)
    parent_recurring_order: models.ForeignKey = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="generated_orders",
    )
    recurring_frequency: models.CharField = models.CharField(
        max_length=20,
        choices=RecurringFrequency.choices,
        blank=True,
        default="",
    )
    recurring_interval: models.PositiveSmallIntegerField = (
        models.PositiveSmallIntegerField(default=DEFAULT_RECURRING_INTERVAL)
    )
    recurring_start_date: models.DateField = models.DateField(null=True, blank=True)
    recurring_end_date: models.DateField = models.DateField(null=True, blank=True)
    next_generation_date: models.DateField = models.DateField(null=True, blank=True)
    last_generated_at: models.DateTimeField = models.DateTimeField(
        null=True, blank=True
    )

    # Scheduling
    harvest_date: models.DateField = models.DateField(null=True, blank=True)
    delivery_date: models.DateField = models.DateField(null=True, blank=True)

    # Lifecycle timestamps
    confirmed_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    cancelled_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    delivered_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)

    consolidated_invoice: models.ForeignKey = models.ForeignKey(
        "billing.Invoice",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="consolidated_orders",
    )
    total_amount: models.DecimalField = models.DecimalField(
        max_digits=32,
        decimal_places=9,
        default=Decimal("0"),
    )
    notes: models.TextField = models.TextField(blank=True, default="")
    idempotency_key: models.CharField = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(fields=["-created_at"], name="orders_created_idx"),
            models.Index(
                fields=["is_recurring", "is_recurring_active"],
                name="orders_recurring_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["parent_recurring_order", "delivery_date"],
                condition=models.Q(parent_recurring_order__isnull=False),
                name="orders_unique_generated_delivery",
            ),
            models.CheckConstraint(
                check=~models.Q(
                    is_recurring=True, parent_recurring_order__isnull=False
                ),
                name="orders_template_has_no_parent",
            ),
        ]

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    @property
    def stage(self) -> str:
        return status_registry.stage_of(self.status)

    @property
    def is_final(self) -> bool:
        return status_registry.is_final(self.status)

    @property
    def allows_modifications(self) -> bool:
        return status_registry.get(self.status).allows_modifications

    # ------------------------------------------------------------------
    # Recurrence roles
    # ------------------------------------------------------------------

    @property
    def is_recurring_template(self) -> bool:
        return (
            self.is_recurring
            and self.status == OrderStatus.TEMPLATE
            and self.parent_recurring_order_id is None
        )

    @property
    def is_generated_from_recurring(self) -> bool:
        return self.parent_recurring_order_id is not None

    # ------------------------------------------------------------------
    # Totals and payment
    # ------------------------------------------------------------------

    def calculate_total(self) -> Decimal:
        """Exact Σ quantity × unit_price over the order's items."""
        return sum(
            (item.quantity * item.unit_price for item in self.items.all()),
            Decimal("0"),
        )

    def refresh_total(self) -> Decimal:
        self.total_amount = self.calculate_total()
        self.save(update_fields=["total_amount", "updated_at"])
        return self.total_amount

    @property
    def amount_paid(self) -> Decimal:
        from modules.billing.models import PaymentStatus

        paid = self.payments.filter(status=PaymentStatus.COMPLETED).aggregate(
            total=Sum("amount")
        )["total"]
        return paid or Decimal("0")

    @property
    def is_paid(self) -> bool:
        return self.amount_paid >= self.calculate_total()

    @property
    def requires_immediate_invoicing(self) -> bool:
        return (
            self.order_type == OrderType.WEBSITE
            or self.billing_frequency == BillingFrequency.IMMEDIATE
        )

    # ------------------------------------------------------------------
    # Production predicates
    # ------------------------------------------------------------------

    @property
    def requires_crop_production(self) -> bool:
        return self.items.filter(product__requires_crop_production=True).exists()

    def _live_crops(self) -> models.QuerySet:
        return self.crops.filter(cancelled_at__isnull=True)

    @property
    def all_crops_planted(self) -> bool:
        """Every live crop plan has (at least) one planted crop."""
        from modules.production.models import CropPlanStatus

        if not self.requires_crop_production:
            return False
        plan_count = self.crop_plans.exclude(status=CropPlanStatus.CANCELLED).count()
        if plan_count == 0:
            return False
        planted = self._live_crops().filter(planted_at__isnull=False).count()
        return planted >= plan_count

    @property
    def all_crops_ready(self) -> bool:
        crops = list(self._live_crops())
        return bool(crops) and all(crop.is_ready_to_harvest for crop in crops)

    @property
    def all_crops_harvested(self) -> bool:
        from modules.production.models import CropStage

        return not self._live_crops().exclude(stage=CropStage.HARVESTED).exists()

    # ------------------------------------------------------------------
    # Order number generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_number() -> str:
        """Generate a human-readable order number: ``ORD-YYYYMMDD-XXXXXX``."""
        now = timezone.now()
        suffix = secrets.token_hex(3).upper()
        return f"ORD-{now:%Y%m%d}-{suffix}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.order_number:
            for _ in range(ORDER_NUMBER_MAX_RETRIES):
                candidate = self.generate_order_number()
                if not Order.objects.filter(order_number=candidate).exists():
                    self.order_number = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique order_number after "
                    f"{ORDER_NUMBER_MAX_RETRIES} attempts"
                )
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.order_number} ({self.status})"


class OrderItem(BaseModel):
    """Line item linking an Order to a Product.

    ``unit_price`` is a **snapshot** resolved when the item is written; it
    never follows later catalog changes.  ``subtotal`` is always
    ``quantity * unit_price``, recalculated on every save.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product: models.ForeignKey = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    price_variation: models.ForeignKey = models.ForeignKey(
        "products.PriceVariation",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="order_items",
    )
    quantity: models.DecimalField = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=Decimal("1"),
        validators=[MinValueValidator(Decimal("0"))],
    )
    unit_price: models.DecimalField = models.DecimalField(
        max_digits=20,
        decimal_places=6,
    )
    subtotal: models.DecimalField = models.DecimalField(
        max_digits=32,
        decimal_places=9,
        editable=False,
    )

    class Meta:
        db_table = "order_items"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                check=models.Q(quantity__gte=0),
                name="order_items_quantity_non_negative",
            ),
        ]

    def clean(self) -> None:
        super().clean()
        if self.quantity is not None and self.quantity < 0:
            raise ValidationError({"quantity": "Quantity cannot be negative."})

    def save(self, *args: Any, **kwargs: Any) -> None:
        if self.unit_price is None:
            raise ValidationError({"unit_price": "Unit price is required."})
        self.subtotal = Decimal(self.quantity) * Decimal(self.unit_price)
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.product} x{self.quantity} (${self.subtotal})"


class OrderPackaging(BaseModel):
    """Packaging allocation of an order (e.g. 12 x 100g clamshells)."""

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="packaging",
    )
    packaging_type: models.ForeignKey = models.ForeignKey(
        "products.PackagingType",
        on_delete=models.PROTECT,
        related_name="order_allocations",
    )
    quantity: models.PositiveIntegerField = models.PositiveIntegerField(default=1)
    notes: models.TextField = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_packaging"
        ordering = ["created_at"]

    def __str__(self) -> str:
        return f"{self.packaging_type} x{self.quantity}"


class OrderStatusHistory(BaseModel):
    """Append-only audit trail for order status transitions.

    Audit records are **immutable**, so this inherits ``BaseModel`` (not
    ``SoftDeleteModel``).  ``actor`` is nullable: ``None`` means the change
    was made by the system (event router, scheduler).
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    old_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
    )
    old_stage: models.CharField = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=Stage.choices,
        null=True,
        blank=True,
    )
    new_stage: models.CharField = models.CharField(
        max_length=20,
        choices=Stage.choices,
    )
    actor: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    notes: models.TextField = models.TextField(blank=True, default="")
    source_event: models.CharField = models.CharField(
        max_length=64, blank=True, default=""
    )
    manual: models.BooleanField = models.BooleanField(default=True)

    class Meta:
        db_table = "order_status_history"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["order", "-created_at"],
                name="osh_order_created_idx",
            ),
        ]

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ValidationError("Status history records are immutable.")
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.order} : {self.old_status} -> {self.new_status}"
