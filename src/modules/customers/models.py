"""Customer model.

Business rules implemented:
- Email must be unique in the system.
- Inactive customers cannot place orders (enforced at service layer).
- Wholesale customers receive a percentage discount on catalog prices;
  the customer's own percentage wins over the product default.
- Soft delete via ``deleted_at`` (inherited from SoftDeleteModel).
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from modules.core.models import SoftDeleteModel

if TYPE_CHECKING:
    from modules.products.models import Product


class CustomerType(models.TextChoices):
    RETAIL = "retail", "Retail"
    WHOLESALE = "wholesale", "Wholesale"


class Customer(SoftDeleteModel):
    """Customer aggregate root."""

    name = models.CharField(max_length=255)
    email = models.EmailField(max_length=254, unique=True)
    phone = models.CharField(max_length=20, blank=True, default="")
    customer_type = models.CharField(
        max_length=20,
        choices=CustomerType.choices,
        default=CustomerType.RETAIL,
    )
    wholesale_discount_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))],
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "customers"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["is_active"], name="customers_active_idx"),
            models.Index(fields=["customer_type"], name="customers_type_idx"),
        ]

    @property
    def is_wholesale(self) -> bool:
        return self.customer_type == CustomerType.WHOLESALE

    def wholesale_discount_for(self, product: Product) -> Decimal:
        """Discount percentage this customer gets on *product*.

        Falls back to the product's default wholesale percentage when the
        customer has none of their own.  Retail customers get zero.
        """
        if not self.is_wholesale:
            return Decimal("0")
        if self.wholesale_discount_percentage is not None:
            return self.wholesale_discount_percentage
        return product.wholesale_discount_percentage or Decimal("0")

    def __str__(self) -> str:
        return f"{self.name} ({self.customer_type})"
