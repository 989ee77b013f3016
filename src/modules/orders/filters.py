import django_filters

from modules.orders.constants import Stage
from modules.orders.models import Order
from modules.orders.registry import status_registry


class OrderFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    stage = django_filters.ChoiceFilter(choices=Stage.choices, method="filter_stage")
    customer = django_filters.UUIDFilter(field_name="customer_id")
    order_type = django_filters.CharFilter(field_name="order_type")
    is_recurring = django_filters.BooleanFilter(field_name="is_recurring")
    parent = django_filters.UUIDFilter(field_name="parent_recurring_order_id")
    delivery_from = django_filters.DateFilter(field_name="delivery_date", lookup_expr="gte")
    delivery_to = django_filters.DateFilter(field_name="delivery_date", lookup_expr="lte")
    start_date = django_filters.DateFilter(field_name="created_at", lookup_expr="date__gte")
    end_date = django_filters.DateFilter(field_name="created_at", lookup_expr="date__lte")
    min_total = django_filters.NumberFilter(
        field_name="total_amount", lookup_expr="gte"
    )
    max_total = django_filters.NumberFilter(
        field_name="total_amount", lookup_expr="lte"
    )

    class Meta:
        model = Order
        fields = [
            "status",
            "stage",
            "customer",
            "order_type",
            "is_recurring",
            "parent",
            "delivery_from",
            "delivery_to",
            "start_date",
            "end_date",
            "min_total",
            "max_total",
        ]

    def filter_stage(self, queryset, name, value):
        codes = [d.code for d in status_registry.all() if d.stage == value]
        return queryset.filter(status__in=codes)
