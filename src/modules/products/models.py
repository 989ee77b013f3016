"""Catalog models: products, their price variations and packaging types.

Business rules implemented:
- SKU must be unique in the system (normalised to upper case).
- Inactive products cannot be sold (enforced at service layer).
- Base price cannot be negative.
- A product's default variation, when present, is its retail price.
- ``requires_crop_production`` marks items that must be grown before
  they can be packed; orders containing one go through the production
  stage of the lifecycle.
- A unit weighs the variation's fill weight, else ``grams_per_unit``;
  a tray yields ``tray_yield_grams`` after ``growing_days`` from sowing.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

import structlog
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from modules.core.models import BaseModel, SoftDeleteModel

logger = structlog.get_logger(__name__)


class Product(SoftDeleteModel):
    """Sellable product (a microgreen variety or a mix)."""

    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    base_price = models.DecimalField(
        max_digits=20,
        decimal_places=6,
        validators=[MinValueValidator(Decimal("0"))],
    )
    wholesale_discount_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))],
    )
    requires_crop_production = models.BooleanField(default=True)

    # Grow parameters used to turn ordered units into trays
    grams_per_unit = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("100.00"),
        validators=[MinValueValidator(Decimal("0"))],
    )
    tray_yield_grams = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("200.00"),
        validators=[MinValueValidator(Decimal("1"))],
    )
    growing_days = models.PositiveSmallIntegerField(default=14)

    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "products"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["is_active"], name="products_active_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                check=models.Q(base_price__gte=0),
                name="products_base_price_non_negative",
            ),
        ]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def clean(self) -> None:
        super().clean()
        if self.sku:
            self.sku = self.sku.strip().upper()
        if self.base_price is not None and self.base_price < 0:
            raise ValidationError({"base_price": "Price cannot be negative."})

    # ------------------------------------------------------------------
    # Pricing helpers
    # ------------------------------------------------------------------

    @property
    def default_variation(self) -> Optional[PriceVariation]:
        return self.price_variations.filter(is_default=True, is_active=True).first()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args, **kwargs) -> None:
        is_new = self._state.adding
        if self.sku:
            self.sku = self.sku.strip().upper()
        super().save(*args, **kwargs)
        if is_new:
            logger.info("product.created", product_id=str(self.id), sku=self.sku)

    def __str__(self) -> str:
        return f"{self.sku} - {self.name}"


class PriceVariation(BaseModel):
    """Named price point of a product (e.g. "Clamshell 100g", "Bulk 1kg")."""

    product = models.ForeignKey(
        "products.Product",
        on_delete=models.CASCADE,
        related_name="price_variations",
    )
    name = models.CharField(max_length=100)
    price = models.DecimalField(
        max_digits=20,
        decimal_places=6,
        validators=[MinValueValidator(Decimal("0"))],
    )
    fill_weight_grams = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0"))],
    )
    is_default = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "price_variations"
        ordering = ["product", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["product"],
                condition=models.Q(is_default=True),
                name="price_variations_one_default_per_product",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.product.name} / {self.name} (${self.price})"


class PackagingType(BaseModel):
    """Container an order is packed in (clamshell, bag, tray)."""

    name = models.CharField(max_length=100, unique=True)
    capacity_grams = models.PositiveIntegerField(null=True, blank=True)
    cost_per_unit = models.DecimalField(
        max_digits=8, decimal_places=2, default=Decimal("0.00")
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "packaging_types"
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name
