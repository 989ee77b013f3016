"""Product domain exceptions."""

from __future__ import annotations


class ProductNotFound(Exception):
    """A product referenced by an order item does not exist."""


class InactiveProduct(Exception):
    """A product referenced by an order item is inactive."""


class PriceUnavailable(Exception):
    """No price can be resolved for the product / variation pair.

    Raised when the variation belongs to another product or has been
    deactivated since the order (or template) was written.
    """
