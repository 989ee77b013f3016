"""Recurrence result DTOs (Pydantic v2)."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RecurrenceError(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    message: str
    code: str


class RecurrenceRunResult(BaseModel):
    """Counters of one scheduler pass.

    Every processed template is counted exactly once:
    ``processed == generated + skipped + deactivated + len(errors)``.
    """

    processed: int = 0
    generated: int = 0
    skipped: int = 0
    deactivated: int = 0
    errors: List[RecurrenceError] = Field(default_factory=list)


class UpcomingGeneration(BaseModel):
    model_config = ConfigDict(frozen=True)

    template_id: str
    order_number: str
    customer_name: str
    next_generation_date: date
    delivery_date: date
    overdue: bool = False


class RecurrenceStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    active_templates: int
    paused_templates: int
    total_generated: int
    upcoming_week: int
    last_generated_at: Optional[str] = None
