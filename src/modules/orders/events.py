"""Domain events for the Orders bounded context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderEvent(DomainEvent):
    topic: ClassVar[str] = "orders"


@dataclass(frozen=True)
class OrderCreated(OrderEvent):
    """Raised when an order (or recurring template) is created."""

    customer_id: Optional[str] = None
    status: str = ""


@dataclass(frozen=True)
class OrderStatusChanged(OrderEvent):
    """Raised after a status transition is persisted."""

    old_status: str = ""
    new_status: str = ""
    manual: bool = True
    source_event: Optional[str] = None


@dataclass(frozen=True)
class PackingStarted(OrderEvent):
    """Raised once per entry into ``packing`` (re-entries from packing excluded)."""

    order_number: str = ""
