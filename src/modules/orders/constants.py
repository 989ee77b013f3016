"""Order domain constants.

Status codes and the stage each one belongs to, plus the small choice sets
used by orders and recurring templates.  The transition graph itself lives
in ``modules.orders.registry``.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    GROWING = "growing", "Growing"
    READY_TO_HARVEST = "ready_to_harvest", "Ready to Harvest"
    HARVESTING = "harvesting", "Harvesting"
    PACKING = "packing", "Packing"
    READY_FOR_DELIVERY = "ready_for_delivery", "Ready for Delivery"
    OUT_FOR_DELIVERY = "out_for_delivery", "Out for Delivery"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"
    TEMPLATE = "template", "Recurring Template"


class Stage(models.TextChoices):
    PRE_PRODUCTION = "pre_production", "Pre-Production"
    PRODUCTION = "production", "Production"
    FULFILLMENT = "fulfillment", "Fulfillment"
    FINAL = "final", "Final"


# Stage ordering used for "jump" detection
STAGE_ORDER: dict[str, int] = {
    Stage.PRE_PRODUCTION: 0,
    Stage.PRODUCTION: 1,
    Stage.FULFILLMENT: 2,
    Stage.FINAL: 3,
}


class OrderType(models.TextChoices):
    WEBSITE = "website", "Website"
    FARMERS_MARKET = "farmers_market", "Farmers Market"
    B2B = "b2b", "B2B"


class BillingFrequency(models.TextChoices):
    IMMEDIATE = "immediate", "Immediate"
    WEEKLY = "weekly", "Weekly"
    BIWEEKLY = "biweekly", "Biweekly"
    MONTHLY = "monthly", "Monthly"
    QUARTERLY = "quarterly", "Quarterly"


class RecurringFrequency(models.TextChoices):
    WEEKLY = "weekly", "Weekly"
    BIWEEKLY = "biweekly", "Biweekly"
    MONTHLY = "monthly", "Monthly"
    QUARTERLY = "quarterly", "Quarterly"


# Statuses the notification sink is told about
NOTIFIABLE_STATUSES: frozenset[str] = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.READY_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    }
)

CROP_CANCELLATION_REASON = "Order cancelled"

DEFAULT_RECURRING_INTERVAL = 2

ORDER_NUMBER_MAX_RETRIES = 5
