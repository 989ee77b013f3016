"""Domain events for recurring templates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import ClassVar, Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class RecurringOrderGenerated(DomainEvent):
    """A template produced a new order.  ``aggregate_id`` is the template."""

    topic: ClassVar[str] = "recurrence"

    generated_order_id: Optional[str] = None
    harvest_date: Optional[date] = None
    delivery_date: Optional[date] = None
    next_generation_date: Optional[date] = None
