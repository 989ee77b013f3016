"""Collaborator ports consumed by the order lifecycle engine.

The engine only depends on these protocols; default adapters live in
``shared.infrastructure`` and the owning Django apps.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal, Optional, Protocol

NotificationKind = Literal["success", "warning", "danger"]


class INotificationSink(Protocol):
    """Reports outcomes to whoever is watching (UI toasts, chat, logs).

    The return value is never consumed.
    """

    def notify(self, kind: NotificationKind, title: str, body: str) -> None: ...


class IAuditLog(Protocol):
    """Append-only record of changes made by the engine."""

    def record(
        self,
        entity: Any,
        old_value: Any,
        new_value: Any,
        actor: Optional[Any],
        label: str,
    ) -> None: ...


class IPricingResolver(Protocol):
    """Current unit price of a product (or one of its variations) for a customer."""

    def price_for(
        self,
        customer: Any,
        product: Any,
        price_variation: Optional[Any] = None,
    ) -> Decimal: ...
