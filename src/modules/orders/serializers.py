"""Order DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the Service Layer, which receives
Pydantic DTOs from ``dtos.py``.
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from modules.orders.constants import BillingFrequency, OrderType, RecurringFrequency
from modules.orders.models import Order, OrderItem, OrderPackaging, OrderStatusHistory

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class CreateOrderItemSerializer(serializers.Serializer):
    """Validates a single item in an order creation request."""

    product_id = serializers.UUIDField()
    quantity = serializers.DecimalField(
        max_digits=14, decimal_places=3, min_value=Decimal("0")
    )
    price_variation_id = serializers.UUIDField(required=False, allow_null=True)


class CreatePackagingSerializer(serializers.Serializer):
    packaging_type_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, default=1)
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class CreateOrderSerializer(serializers.Serializer):
    """Validates the order creation request payload."""

    customer_id = serializers.UUIDField()
    items = CreateOrderItemSerializer(many=True, allow_empty=False)
    packaging = CreatePackagingSerializer(many=True, required=False, default=list)
    order_type = serializers.ChoiceField(choices=OrderType.choices, default=OrderType.WEBSITE)
    billing_frequency = serializers.ChoiceField(
        choices=BillingFrequency.choices, default=BillingFrequency.IMMEDIATE
    )
    requires_invoice = serializers.BooleanField(default=False)
    harvest_date = serializers.DateField(required=False, allow_null=True)
    delivery_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, default="", allow_blank=True)

    is_recurring = serializers.BooleanField(default=False)
    recurring_frequency = serializers.ChoiceField(
        choices=RecurringFrequency.choices, required=False, allow_null=True
    )
    recurring_interval = serializers.IntegerField(min_value=1, required=False)
    recurring_start_date = serializers.DateField(required=False, allow_null=True)
    recurring_end_date = serializers.DateField(required=False, allow_null=True)


class TransitionSerializer(serializers.Serializer):
    status = serializers.CharField(max_length=20)
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class BulkTransitionSerializer(serializers.Serializer):
    order_ids = serializers.ListField(child=serializers.CharField(), allow_empty=False)
    status = serializers.CharField(max_length=20)
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class BusinessEventSerializer(serializers.Serializer):
    event = serializers.CharField(max_length=64)
    payload = serializers.DictField(required=False, default=dict)


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class OrderItemSerializer(serializers.ModelSerializer):
    """Read serializer for order items with product snapshot."""

    product_name = serializers.CharField(source="product.name", read_only=True)
    product_sku = serializers.CharField(source="product.sku", read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product_id",
            "product_name",
            "product_sku",
            "price_variation_id",
            "quantity",
            "unit_price",
            "subtotal",
        ]
        read_only_fields = fields


class OrderPackagingSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderPackaging
        fields = ["id", "packaging_type_id", "quantity", "notes"]
        read_only_fields = fields


class StatusHistorySerializer(serializers.ModelSerializer):
    """Read serializer for order status history records."""

    class Meta:
        model = OrderStatusHistory
        fields = [
            "id",
            "old_status",
            "new_status",
            "old_stage",
            "new_stage",
            "actor_id",
            "notes",
            "source_event",
            "manual",
            "created_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer for orders with nested items, packaging and history."""

    stage = serializers.CharField(read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)
    packaging = OrderPackagingSerializer(many=True, read_only=True)
    status_history = StatusHistorySerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer_id",
            "status",
            "stage",
            "order_type",
            "billing_frequency",
            "requires_invoice",
            "is_recurring",
            "is_recurring_active",
            "parent_recurring_order_id",
            "recurring_frequency",
            "recurring_interval",
            "recurring_start_date",
            "recurring_end_date",
            "next_generation_date",
            "last_generated_at",
            "harvest_date",
            "delivery_date",
            "confirmed_at",
            "cancelled_at",
            "delivered_at",
            "total_amount",
            "notes",
            "created_at",
            "updated_at",
            "items",
            "packaging",
            "status_history",
        ]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for order list (no nested relations)."""

    stage = serializers.CharField(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer_id",
            "status",
            "stage",
            "order_type",
            "delivery_date",
            "total_amount",
            "created_at",
        ]
        read_only_fields = fields


class BulkTransitionResultSerializer(serializers.Serializer):
    successful = serializers.ListField(child=serializers.CharField())
    failed = serializers.ListField(child=serializers.DictField())
    skipped = serializers.ListField(child=serializers.DictField())
