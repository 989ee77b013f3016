"""Unit tests for recurrence calendar math."""

from __future__ import annotations

from datetime import date, datetime
from types import SimpleNamespace

import pytest
from django.utils import timezone

from modules.orders.constants import RecurringFrequency
from modules.recurrence.schedule import (
    add_frequency,
    compute_next_generation_date,
    due_date,
    local_date,
    order_dates,
)

pytestmark = pytest.mark.unit


def template(**overrides):
    values = {
        "recurring_frequency": RecurringFrequency.WEEKLY,
        "recurring_interval": 2,
        "recurring_start_date": date(2025, 1, 1),
        "last_generated_at": None,
        "next_generation_date": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


# ---------------------------------------------------------------------------
# add_frequency
# ---------------------------------------------------------------------------


class TestAddFrequency:
    def test_weekly_adds_seven_days(self):
        assert add_frequency(date(2025, 1, 1), RecurringFrequency.WEEKLY) == date(2025, 1, 8)

    def test_biweekly_defaults_to_two_weeks(self):
        assert add_frequency(date(2025, 1, 1), RecurringFrequency.BIWEEKLY) == date(
            2025, 1, 15
        )

    def test_biweekly_honours_interval(self):
        assert add_frequency(
            date(2025, 1, 1), RecurringFrequency.BIWEEKLY, interval=3
        ) == date(2025, 1, 22)

    def test_monthly_clamps_to_end_of_february(self):
        assert add_frequency(date(2025, 1, 31), RecurringFrequency.MONTHLY) == date(
            2025, 2, 28
        )

    def test_monthly_clamps_to_leap_day(self):
        assert add_frequency(date(2024, 1, 31), RecurringFrequency.MONTHLY) == date(
            2024, 2, 29
        )

    def test_monthly_reanchors_to_original_day(self):
        feb = add_frequency(date(2025, 1, 31), RecurringFrequency.MONTHLY)
        mar = add_frequency(feb, RecurringFrequency.MONTHLY, anchor_day=31)
        apr = add_frequency(mar, RecurringFrequency.MONTHLY, anchor_day=31)
        assert (feb, mar, apr) == (date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30))

    def test_quarterly_adds_three_months(self):
        assert add_frequency(date(2025, 1, 15), RecurringFrequency.QUARTERLY) == date(
            2025, 4, 15
        )

    def test_quarterly_clamps_to_month_end(self):
        assert add_frequency(date(2024, 11, 30), RecurringFrequency.QUARTERLY) == date(
            2025, 2, 28
        )

    def test_weekly_crosses_year_boundary(self):
        assert add_frequency(date(2024, 12, 28), RecurringFrequency.WEEKLY) == date(
            2025, 1, 4
        )

    def test_unknown_frequency_raises(self):
        with pytest.raises(ValueError, match="Unsupported recurring frequency"):
            add_frequency(date(2025, 1, 1), "daily")


# ---------------------------------------------------------------------------
# Next generation date
# ---------------------------------------------------------------------------


class TestComputeNextGenerationDate:
    def test_never_generated_is_one_step_after_start(self):
        assert compute_next_generation_date(template()) == date(2025, 1, 8)

    def test_counts_from_last_generation(self):
        last = timezone.make_aware(datetime(2025, 1, 10, 9, 0))
        assert compute_next_generation_date(template(last_generated_at=last)) == date(
            2025, 1, 17
        )

    def test_explicit_since_wins(self):
        last = timezone.make_aware(datetime(2025, 1, 10, 9, 0))
        result = compute_next_generation_date(
            template(last_generated_at=last), since=date(2025, 3, 1)
        )
        assert result == date(2025, 3, 8)

    def test_monthly_uses_start_day_as_anchor(self):
        last = timezone.make_aware(datetime(2025, 2, 28, 0, 0))
        result = compute_next_generation_date(
            template(
                recurring_frequency=RecurringFrequency.MONTHLY,
                recurring_start_date=date(2025, 1, 31),
                last_generated_at=last,
            )
        )
        assert result == date(2025, 3, 31)

    def test_missing_start_date_returns_none(self):
        assert compute_next_generation_date(template(recurring_start_date=None)) is None

    def test_stored_next_date_is_the_due_date(self):
        assert due_date(template(next_generation_date=date(2025, 2, 2))) == date(2025, 2, 2)

    def test_due_date_falls_back_to_computed(self):
        assert due_date(template()) == date(2025, 1, 8)


class TestHelpers:
    def test_order_dates_deliver_the_day_after_harvest(self):
        assert order_dates(date(2025, 1, 8)) == (date(2025, 1, 8), date(2025, 1, 9))

    def test_local_date_of_naive_datetime(self):
        assert local_date(datetime(2025, 1, 8, 23, 30)) == date(2025, 1, 8)

    def test_local_date_uses_configured_time_zone(self, settings):
        settings.TIME_ZONE = "America/Vancouver"
        instant = datetime(2025, 1, 9, 3, 0, tzinfo=timezone.get_fixed_timezone(0))
        assert local_date(instant) == date(2025, 1, 8)
