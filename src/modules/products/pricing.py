"""Customer-specific price resolution.

Retail price is the explicit variation's price, else the product's default
variation, else the product's base price.  Wholesale customers get a
percentage off that retail price: their own percentage if set, otherwise
the product default.  The percentage is capped at 100 and the resulting
price floored at zero.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog

from modules.customers.models import Customer
from modules.products.exceptions import PriceUnavailable
from modules.products.models import PriceVariation, Product
from shared.domain.ports import IPricingResolver

logger = structlog.get_logger(__name__)

_PRICE_QUANTUM = Decimal("0.000001")
_HUNDRED = Decimal("100")


class CatalogPricingResolver(IPricingResolver):
    """Prices straight from the catalog tables."""

    def price_for(
        self,
        customer: Customer,
        product: Product,
        price_variation: Optional[PriceVariation] = None,
    ) -> Decimal:
        retail = self.retail_price(product, price_variation)
        discount = customer.wholesale_discount_for(product)
        if discount <= 0:
            return retail

        discount = min(discount, _HUNDRED)
        price = retail - (retail * discount / _HUNDRED)
        price = max(price, Decimal("0")).quantize(_PRICE_QUANTUM, rounding=ROUND_HALF_UP)
        logger.debug(
            "pricing.wholesale_applied",
            product_id=str(product.id),
            customer_id=str(customer.id),
            discount_percentage=str(discount),
            price=str(price),
        )
        return price

    def retail_price(
        self,
        product: Product,
        price_variation: Optional[PriceVariation] = None,
    ) -> Decimal:
        if price_variation is not None:
            if price_variation.product_id != product.id:
                raise PriceUnavailable(
                    f"Variation {price_variation.id} does not belong to product {product.sku}."
                )
            if not price_variation.is_active:
                raise PriceUnavailable(
                    f"Variation {price_variation.name!r} of {product.sku} is inactive."
                )
            return price_variation.price

        default = product.default_variation
        if default is not None:
            return default.price
        return product.base_price


# Default resolver used by services when none is injected
pricing_resolver = CatalogPricingResolver()
