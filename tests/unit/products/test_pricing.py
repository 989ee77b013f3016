"""Unit tests for customer-specific price resolution."""

from __future__ import annotations

from decimal import Decimal

import pytest

from modules.customers.models import Customer, CustomerType
from modules.products.exceptions import PriceUnavailable
from modules.products.models import PriceVariation, Product
from modules.products.pricing import CatalogPricingResolver

pytestmark = pytest.mark.unit


@pytest.fixture()
def resolver():
    return CatalogPricingResolver()


@pytest.fixture()
def pea():
    product = Product.objects.create(
        sku="pea-001",
        name="Pea Shoots",
        base_price=Decimal("6.00"),
        wholesale_discount_percentage=Decimal("10"),
    )
    PriceVariation.objects.create(
        product=product, name="Clamshell 100g", price=Decimal("8.00"), is_default=True
    )
    return product


@pytest.fixture()
def bulk(pea):
    return PriceVariation.objects.create(product=pea, name="Bulk 1kg", price=Decimal("60.00"))


class TestRetailPrice:
    def test_base_price_without_variations(self, resolver, customer, product):
        assert resolver.price_for(customer, product) == Decimal("12.00")

    def test_default_variation_wins_over_base_price(self, resolver, customer, pea):
        assert resolver.price_for(customer, pea) == Decimal("8.00")

    def test_explicit_variation(self, resolver, customer, pea, bulk):
        assert resolver.price_for(customer, pea, bulk) == Decimal("60.00")

    def test_inactive_variation_is_unavailable(self, resolver, customer, pea, bulk):
        bulk.is_active = False
        bulk.save()
        with pytest.raises(PriceUnavailable, match="inactive"):
            resolver.price_for(customer, pea, bulk)

    def test_variation_of_another_product_is_unavailable(
        self, resolver, customer, product, bulk
    ):
        with pytest.raises(PriceUnavailable, match="does not belong"):
            resolver.price_for(customer, product, bulk)

    def test_sku_is_normalised(self, pea):
        assert pea.sku == "PEA-001"


class TestWholesalePrice:
    def test_customer_percentage_wins(self, resolver, wholesale_customer, pea):
        # 8.00 - 15%
        assert resolver.price_for(wholesale_customer, pea) == Decimal("6.80")

    def test_product_default_percentage_applies(self, resolver, pea):
        buyer = Customer.objects.create(
            name="Green Table Cafe",
            email="kitchen@greentable.example",
            customer_type=CustomerType.WHOLESALE,
        )
        assert resolver.price_for(buyer, pea) == Decimal("7.20")

    def test_no_percentage_means_retail(self, resolver, product):
        buyer = Customer.objects.create(
            name="Co-op",
            email="buying@coop.example",
            customer_type=CustomerType.WHOLESALE,
        )
        assert resolver.price_for(buyer, product) == Decimal("12.00")

    def test_discount_over_hundred_is_capped(self, resolver, pea):
        buyer = Customer(
            name="Overdiscounted",
            email="x@example.com",
            customer_type=CustomerType.WHOLESALE,
            wholesale_discount_percentage=Decimal("150"),
        )
        assert resolver.price_for(buyer, pea) == Decimal("0.00")

    def test_sub_cent_prices_are_not_rounded_to_cents(self, resolver, wholesale_customer):
        seed = Product.objects.create(
            sku="seed-001", name="Seed by the gram", base_price=Decimal("0.004")
        )
        assert resolver.price_for(wholesale_customer, seed) == Decimal("0.0034")

    def test_retail_customer_ignores_product_discount(self, resolver, customer, pea):
        assert resolver.price_for(customer, pea) == Decimal("8.00")
