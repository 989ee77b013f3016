"""Invoice and Payment models.

Only the paid / unpaid signal matters to the order lifecycle: an order is
paid once its completed payments cover ``Order.calculate_total()``.
Ledger reconciliation is out of scope.
"""

from __future__ import annotations

import secrets
from decimal import Decimal

import structlog
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel

logger = structlog.get_logger(__name__)


class InvoiceStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    PAID = "paid", "Paid"
    OVERDUE = "overdue", "Overdue"
    CANCELLED = "cancelled", "Cancelled"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class PaymentMethod(models.TextChoices):
    STRIPE = "stripe", "Stripe"
    E_TRANSFER = "e-transfer", "E-transfer"
    CASH = "cash", "Cash"
    INVOICE = "invoice", "Invoice"


class Invoice(BaseModel):
    """Invoice for one order, or a consolidated invoice for a billing period.

    Consolidated invoices have no ``order``; the orders they cover point
    at them through ``Order.consolidated_invoice``.
    """

    order = models.OneToOneField(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="invoice",
        null=True,
        blank=True,
    )
    customer = models.ForeignKey(
        "customers.Customer",
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    invoice_number = models.CharField(max_length=32, unique=True, editable=False)
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    status = models.CharField(
        max_length=20,
        choices=InvoiceStatus.choices,
        default=InvoiceStatus.DRAFT,
    )
    is_consolidated = models.BooleanField(default=False)
    billing_period_start = models.DateField(null=True, blank=True)
    billing_period_end = models.DateField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "invoices"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="invoices_status_idx"),
        ]

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    def mark_as_paid(self) -> None:
        self.status = InvoiceStatus.PAID
        self.paid_at = self.paid_at or timezone.now()
        self.save(update_fields=["status", "paid_at", "updated_at"])
        logger.info("invoice.paid", invoice_id=str(self.id))

    def cancel(self) -> None:
        self.status = InvoiceStatus.CANCELLED
        self.save(update_fields=["status", "updated_at"])
        logger.info("invoice.cancelled", invoice_id=str(self.id))

    def save(self, *args, **kwargs) -> None:
        if not self.invoice_number:
            self.invoice_number = f"INV-{timezone.now():%Y%m%d}-{secrets.token_hex(3).upper()}"
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.invoice_number} ({self.status})"


class Payment(BaseModel):
    """Money received against an order."""

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="payments",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.INVOICE,
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        db_table = "payments"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["order", "status"], name="payments_order_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.method} ${self.amount} ({self.status})"
