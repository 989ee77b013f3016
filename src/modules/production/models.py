"""Crop planning and growing models.

- ``CropPlan``: production requirement derived from one order's items.
- ``CropPlanAggregate``: plans for the same variety and dates, summed so
  the grower sows one batch.
- ``Crop``: a batch of trays actually in the grow room.
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models

from modules.core.models import BaseModel


class CropPlanStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    ACTIVE = "active", "Active"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class AggregateStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    CONFIRMED = "confirmed", "Confirmed"
    CANCELLED = "cancelled", "Cancelled"


class CropStage(models.TextChoices):
    SOAKING = "soaking", "Soaking"
    GERMINATION = "germination", "Germination"
    BLACKOUT = "blackout", "Blackout"
    LIGHT = "light", "Light"
    HARVESTING = "harvesting", "Harvesting"
    HARVESTED = "harvested", "Harvested"


class CropPlanAggregate(BaseModel):
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="crop_plan_aggregates",
    )
    plant_date = models.DateField()
    harvest_date = models.DateField()
    total_trays_needed = models.PositiveIntegerField(default=0)
    total_grams_needed = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    status = models.CharField(
        max_length=20,
        choices=AggregateStatus.choices,
        default=AggregateStatus.DRAFT,
    )
    calculation_details = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "crop_plan_aggregates"
        ordering = ["plant_date"]
        indexes = [
            models.Index(
                fields=["product", "plant_date", "harvest_date"],
                name="cpa_variety_dates_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.product} sow {self.plant_date} ({self.total_trays_needed} trays)"


class CropPlan(BaseModel):
    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="crop_plans",
    )
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="crop_plans",
    )
    status = models.CharField(
        max_length=20,
        choices=CropPlanStatus.choices,
        default=CropPlanStatus.DRAFT,
    )
    trays_needed = models.PositiveIntegerField(default=0)
    grams_needed = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    plant_by_date = models.DateField()
    expected_harvest_date = models.DateField()
    calculation_details = models.JSONField(default=dict, blank=True)
    notes = models.TextField(blank=True, default="")
    aggregate = models.ForeignKey(
        "production.CropPlanAggregate",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="plans",
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        db_table = "crop_plans"
        ordering = ["plant_by_date"]

    # ------------------------------------------------------------------
    # Gating rules
    # ------------------------------------------------------------------

    @property
    def can_be_approved(self) -> bool:
        return self.status == CropPlanStatus.DRAFT

    @property
    def can_be_cancelled(self) -> bool:
        return self.status != CropPlanStatus.CANCELLED and not self.crops.exists()

    def __str__(self) -> str:
        return f"Plan {self.product} x{self.trays_needed} for {self.order_id} ({self.status})"


class Crop(BaseModel):
    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="crops",
    )
    crop_plan = models.ForeignKey(
        "production.CropPlan",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="crops",
    )
    stage = models.CharField(
        max_length=20,
        choices=CropStage.choices,
        default=CropStage.SOAKING,
    )
    tray_count = models.PositiveIntegerField(default=1)
    planted_at = models.DateTimeField(null=True, blank=True)
    harvested_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        db_table = "crops"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["order", "stage"], name="crops_order_stage_idx"),
        ]

    @property
    def is_ready_to_harvest(self) -> bool:
        return self.stage == CropStage.LIGHT

    @property
    def is_harvested(self) -> bool:
        return self.stage == CropStage.HARVESTED

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    def __str__(self) -> str:
        return f"Crop {self.id} [{self.stage}]"
