"""Customer domain exceptions.

Raised by the Service Layer when an order references a customer that
cannot buy.  The API layer (Views) translates them into HTTP responses.
"""

from __future__ import annotations


class CustomerNotFound(Exception):
    """The requested customer does not exist or has been soft-deleted."""


class InactiveCustomer(Exception):
    """The customer is inactive and cannot place orders."""
