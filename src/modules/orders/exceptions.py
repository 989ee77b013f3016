"""Order lifecycle exceptions.

Every error carries a human-readable ``message`` and a machine ``code``.
Services raise, views map to HTTP, batch callers (bulk transition,
recurrence pass, event router) collect or swallow according to the policy
documented on each class.
"""

from __future__ import annotations

from typing import Optional


class OrderDomainError(Exception):
    """Base class for order lifecycle errors."""

    code = "order_error"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class UnknownStatus(OrderDomainError):
    """A status code that is not in the catalog (configuration error)."""

    code = "unknown_status"

    def __init__(self, status: str) -> None:
        super().__init__(f"Unknown order status {status!r}.")
        self.status = status


class InvalidTransition(OrderDomainError):
    """The requested edge is not in the graph or a guard rejected it.

    Never retried.  Interactive callers surface it, event-driven callers
    treat it as a no-op.
    """

    code = "invalid_transition"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        reason: Optional[str] = None,
    ) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason or f"Cannot transition from {from_status} to {to_status}."
        super().__init__(self.reason)


class ConcurrentTransition(OrderDomainError):
    """Another writer kept changing the status under us."""

    code = "concurrent_transition"


class OrderNotFound(OrderDomainError):
    """The requested order does not exist or has been soft-deleted."""

    code = "order_not_found"


class DuplicateGeneration(OrderDomainError):
    """A generated order already exists for this template and delivery date."""

    code = "duplicate_generation"


class MaterializationFailure(OrderDomainError):
    """Pricing or persistence failed while creating an order from a template."""

    code = "materialization_failure"


class SideEffectFailure(OrderDomainError):
    """A post-transition cascade failed; the transition itself stands."""

    code = "side_effect_failure"

    def __init__(self, effect: str, message: str) -> None:
        super().__init__(f"{effect}: {message}")
        self.effect = effect


class NotRecurringTemplate(OrderDomainError):
    code = "not_recurring_template"


class InactiveTemplate(OrderDomainError):
    code = "inactive_template"
