"""Recurring template DRF serializers."""

from __future__ import annotations

from rest_framework import serializers

from modules.orders.models import Order
from modules.orders.serializers import OrderItemSerializer, OrderPackagingSerializer


class RecurringTemplateSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    packaging = OrderPackagingSerializer(many=True, read_only=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    generated_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer_id",
            "customer_name",
            "status",
            "order_type",
            "billing_frequency",
            "is_recurring_active",
            "recurring_frequency",
            "recurring_interval",
            "recurring_start_date",
            "recurring_end_date",
            "next_generation_date",
            "last_generated_at",
            "total_amount",
            "notes",
            "generated_count",
            "items",
            "packaging",
            "created_at",
        ]
        read_only_fields = fields

    def get_generated_count(self, obj: Order) -> int:
        return obj.generated_orders.filter(deleted_at__isnull=True).count()


class RunDateSerializer(serializers.Serializer):
    date = serializers.DateField(required=False, allow_null=True)


class UpcomingQuerySerializer(serializers.Serializer):
    days = serializers.IntegerField(required=False, min_value=0, max_value=366)
