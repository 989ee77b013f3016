"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
These are the contracts between the API layer (DRF Serializers)
and the Service layer.  DTOs are immutable (``frozen=True``).

- ``CreateOrderItemDTO`` / ``CreatePackagingDTO``: nested inputs.
- ``CreateOrderDTO``: input for order and recurring template creation.
- ``TransitionContext``: who / what asked for a status change.
- ``BulkTransitionResult``: per-order outcome of a bulk transition.
- ``PriceRecalculationFilter`` / ``PriceRecalculationResult``: re-pricing
  of open orders against the current catalog.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from modules.orders.constants import (
    DEFAULT_RECURRING_INTERVAL,
    BillingFrequency,
    OrderType,
    RecurringFrequency,
)

# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class CreateOrderItemDTO(BaseModel):
    """Immutable DTO for a single order item in a creation request.

    ``unit_price`` is optional: when omitted the Service Layer resolves the
    customer's current price for the product / variation.  Quantities may
    be fractional (weight-based goods) and zero; prices may be negative
    (discount lines).
    """

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    quantity: Decimal = Decimal("1")
    price_variation_id: Optional[UUID] = None
    unit_price: Optional[Decimal] = None

    @field_validator("quantity")
    @classmethod
    def quantity_must_not_be_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Quantity cannot be negative.")
        return v


class CreatePackagingDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    packaging_type_id: UUID
    quantity: int = Field(default=1, ge=1)
    notes: str = ""


class CreateOrderDTO(BaseModel):
    """Immutable DTO for order creation requests.

    Validates:
    - ``items`` must contain at least one item.
    - A recurring template needs a frequency and a start date, and its end
      date (if any) cannot precede the start date.
    """

    model_config = ConfigDict(frozen=True)

    customer_id: UUID
    items: List[CreateOrderItemDTO]
    packaging: List[CreatePackagingDTO] = Field(default_factory=list)
    order_type: OrderType = OrderType.WEBSITE
    billing_frequency: BillingFrequency = BillingFrequency.IMMEDIATE
    requires_invoice: bool = False
    harvest_date: Optional[date] = None
    delivery_date: Optional[date] = None
    notes: Optional[str] = ""
    idempotency_key: Optional[str] = None

    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    recurring_interval: int = Field(default=DEFAULT_RECURRING_INTERVAL, ge=1)
    recurring_start_date: Optional[date] = None
    recurring_end_date: Optional[date] = None

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(
        cls, v: List[CreateOrderItemDTO]
    ) -> List[CreateOrderItemDTO]:
        if not v:
            raise ValueError("Order must have at least one item.")
        return v

    @model_validator(mode="after")
    def recurrence_is_complete(self):
        if not self.is_recurring:
            return self
        if self.recurring_frequency is None:
            raise ValueError("Recurring orders require a recurring_frequency.")
        if self.recurring_start_date is None:
            raise ValueError("Recurring orders require a recurring_start_date.")
        if (
            self.recurring_end_date is not None
            and self.recurring_end_date < self.recurring_start_date
        ):
            raise ValueError("recurring_end_date cannot be before recurring_start_date.")
        return self


class TransitionContext(BaseModel):
    """Who asked for a status change and why.

    ``manual=False`` marks transitions issued by the event router or the
    scheduler; ``source_event`` then names the business event.
    """

    model_config = ConfigDict(frozen=True)

    manual: bool = True
    notes: Optional[str] = None
    actor_id: Optional[int] = None
    source_event: Optional[str] = None


# ---------------------------------------------------------------------------
# Result DTOs
# ---------------------------------------------------------------------------


class BulkTransitionFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    reason: str
    code: str


class BulkTransitionSkip(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    reason: str


class BulkTransitionResult(BaseModel):
    """Outcome of ``StatusTransitionService.bulk_transition``.

    Every requested id lands in exactly one of the three lists.
    """

    successful: List[str] = Field(default_factory=list)
    failed: List[BulkTransitionFailure] = Field(default_factory=list)
    skipped: List[BulkTransitionSkip] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed) + len(self.skipped)


# ---------------------------------------------------------------------------
# Price recalculation
# ---------------------------------------------------------------------------


class PriceRecalculationFilter(BaseModel):
    """Which orders ``OrderService.recalculate_prices`` looks at.

    Templates and orders in a final status are never re-priced.
    """

    model_config = ConfigDict(frozen=True)

    order_id: Optional[UUID] = None
    customer_id: Optional[UUID] = None
    wholesale_only: bool = False
    created_from: Optional[date] = None
    created_to: Optional[date] = None


class RepricedOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    order_number: str
    old_total: Decimal
    new_total: Decimal
    items_updated: int

    @property
    def difference(self) -> Decimal:
        return self.old_total - self.new_total


class PriceRecalculationError(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    message: str
    code: str


class PriceRecalculationResult(BaseModel):
    dry_run: bool = False
    examined: int = 0
    repriced: List[RepricedOrder] = Field(default_factory=list)
    errors: List[PriceRecalculationError] = Field(default_factory=list)

    @property
    def total_difference(self) -> Decimal:
        return sum((order.difference for order in self.repriced), Decimal("0"))
