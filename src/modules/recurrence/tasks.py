"""Asynchronous tasks of the recurrence module."""

from datetime import date
from typing import Optional

import structlog
from celery import shared_task

from modules.recurrence.services import RecurrenceScheduler

logger = structlog.get_logger(__name__)


@shared_task(name="recurrence.process_recurring_orders")
def process_recurring_orders(run_date: Optional[str] = None) -> dict:
    """Daily recurring-order pass; ``run_date`` (ISO) back-dates the run."""
    today = date.fromisoformat(run_date) if run_date else None
    result = RecurrenceScheduler().process_recurring_orders(today=today)
    logger.info(
        "recurrence.task_completed",
        generated=result.generated,
        errors=len(result.errors),
    )
    return result.model_dump()
