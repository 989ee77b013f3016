from datetime import date
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

# Load the URLconf (and the Pydantic DTOs it imports) before any test
# freezes time: freezegun swaps ``datetime.date`` for ``FakeDate``, which
# Pydantic cannot build a schema for.
import config.urls  # noqa: F401
from modules.customers.models import Customer, CustomerType
from modules.customers.repositories.django_repository import CustomerDjangoRepository
from modules.orders.constants import (
    BillingFrequency,
    OrderStatus,
    OrderType,
    RecurringFrequency,
)
from modules.orders.models import Order, OrderItem
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService, StatusTransitionService
from modules.products.models import PackagingType, Product
from modules.products.repositories.django_repository import ProductDjangoRepository


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


@pytest.fixture()
def user():
    return get_user_model().objects.create_user("grower", password="grower-pass-123")


@pytest.fixture()
def auth_client(api_client, user):
    """APIClient authenticated as ``user``."""
    api_client.force_authenticate(user=user)
    return api_client


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer():
    return Customer.objects.create(
        name="Maya Chen",
        email="maya@example.com",
        customer_type=CustomerType.RETAIL,
    )


@pytest.fixture()
def wholesale_customer():
    return Customer.objects.create(
        name="Harbour Bistro",
        email="orders@harbourbistro.example",
        customer_type=CustomerType.WHOLESALE,
        wholesale_discount_percentage=Decimal("15"),
    )


@pytest.fixture()
def product():
    """A grown product: orders containing it go through production."""
    return Product.objects.create(
        sku="SUN-001",
        name="Sunflower",
        base_price=Decimal("12.00"),
        requires_crop_production=True,
    )


@pytest.fixture()
def plain_product():
    """A product that is not grown (e.g. a delivery fee)."""
    return Product.objects.create(
        sku="DEL-001",
        name="Delivery Fee",
        base_price=Decimal("5.00"),
        requires_crop_production=False,
    )


@pytest.fixture()
def packaging_type():
    return PackagingType.objects.create(
        name="Clamshell 100g", capacity_grams=100, cost_per_unit=Decimal("0.35")
    )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture()
def order_repository():
    return OrderDjangoRepository()


@pytest.fixture()
def order_service(order_repository):
    return OrderService(
        order_repository=order_repository,
        customer_repository=CustomerDjangoRepository(),
        product_repository=ProductDjangoRepository(),
    )


@pytest.fixture()
def transition_service(order_repository):
    return StatusTransitionService(order_repository)


# ---------------------------------------------------------------------------
# Order factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_order(customer, plain_product):
    """Factory writing an order straight to the database.

    ``items`` is a list of ``(product, quantity, unit_price)``; defaults to
    one non-grown line so production guards stay out of the way.
    """

    def _make(status=OrderStatus.PENDING, items=None, **fields):
        fields.setdefault("customer", customer)
        order = Order.objects.create(status=status, **fields)
        for item_product, quantity, unit_price in items or [
            (plain_product, Decimal("1"), Decimal("10.00"))
        ]:
            OrderItem.objects.create(
                order=order,
                product=item_product,
                quantity=Decimal(quantity),
                unit_price=Decimal(unit_price),
            )
        order.refresh_total()
        return order

    return _make


@pytest.fixture()
def make_template(customer, product):
    """Factory for an active recurring template with one grown line."""

    def _make(
        frequency=RecurringFrequency.WEEKLY,
        start=date(2024, 12, 25),
        unit_price=Decimal("10.00"),
        **fields,
    ):
        fields.setdefault("customer", customer)
        fields.setdefault("order_type", OrderType.B2B)
        fields.setdefault("billing_frequency", BillingFrequency.WEEKLY)
        fields.setdefault("is_recurring_active", True)
        template = Order.objects.create(
            status=OrderStatus.TEMPLATE,
            is_recurring=True,
            recurring_frequency=frequency,
            recurring_start_date=start,
            **fields,
        )
        OrderItem.objects.create(
            order=template,
            product=product,
            quantity=Decimal("2"),
            unit_price=unit_price,
        )
        template.refresh_total()
        return template

    return _make
