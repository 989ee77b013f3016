"""Calendar math for recurring templates.

Weekly steps are 7 days, biweekly steps ``interval`` weeks.  Monthly and
quarterly steps are calendar months anchored to the start date's
day-of-month and clamped to the month end, so a template started on the
31st generates on Feb 28/29, then Mar 31, Apr 30, ...
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Optional, Tuple

from dateutil.relativedelta import relativedelta
from django.utils import timezone

from modules.orders.constants import DEFAULT_RECURRING_INTERVAL, RecurringFrequency

if TYPE_CHECKING:
    from modules.orders.models import Order


def add_frequency(
    start: date,
    frequency: str,
    interval: Optional[int] = None,
    anchor_day: Optional[int] = None,
) -> date:
    """Return *start* advanced by one recurrence step.

    Raises:
        ValueError: *frequency* is not a known recurring frequency.
    """
    if frequency == RecurringFrequency.WEEKLY:
        return start + timedelta(weeks=1)
    if frequency == RecurringFrequency.BIWEEKLY:
        return start + timedelta(weeks=interval or DEFAULT_RECURRING_INTERVAL)
    if frequency == RecurringFrequency.MONTHLY:
        return start + relativedelta(months=1, day=anchor_day or start.day)
    if frequency == RecurringFrequency.QUARTERLY:
        return start + relativedelta(months=3, day=anchor_day or start.day)
    raise ValueError(f"Unsupported recurring frequency {frequency!r}.")


def local_date(value: datetime) -> date:
    if timezone.is_naive(value):
        return value.date()
    return timezone.localdate(value)


def compute_next_generation_date(
    template: Order, since: Optional[date] = None
) -> Optional[date]:
    """One step after *since*, the last generation, or the start date.

    Returns ``None`` for a template without a start date.
    """
    start = template.recurring_start_date
    if since is None:
        if template.last_generated_at is not None:
            since = local_date(template.last_generated_at)
        else:
            since = start
    if since is None:
        return None
    return add_frequency(
        since,
        template.recurring_frequency,
        template.recurring_interval,
        anchor_day=start.day if start else None,
    )


def due_date(template: Order) -> Optional[date]:
    """The date the template's next order is due.

    The stored ``next_generation_date`` wins; it is only missing on
    templates written before it was tracked.
    """
    if template.next_generation_date is not None:
        return template.next_generation_date
    return compute_next_generation_date(template)


def order_dates(generation_date: date) -> Tuple[date, date]:
    """``(harvest_date, delivery_date)`` of an order generated on *generation_date*."""
    return generation_date, generation_date + timedelta(days=1)
