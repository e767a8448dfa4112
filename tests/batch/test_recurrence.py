"""
Tests for giving_batch.domain.recurrence -- calendar arithmetic for plans.

Pure functions, no database.
"""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from giving_batch.domain.recurrence import (
    add_months,
    add_period,
    due_date_for_cycle,
    first_cycle_after,
)
from giving_batch.domain.types import Frequency


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestAddMonths:
    def test_clamps_to_leap_day(self):
        assert add_months(_utc(2024, 1, 31), 1) == _utc(2024, 2, 29)

    def test_clamps_to_february_28(self):
        assert add_months(_utc(2023, 1, 31), 1) == _utc(2023, 2, 28)

    def test_crosses_year_boundary(self):
        assert add_months(_utc(2024, 11, 15, 9, 30), 3) == _utc(2025, 2, 15, 9, 30)

    def test_keeps_tzinfo(self):
        assert add_months(_utc(2024, 1, 1), 1).tzinfo is timezone.utc


class TestAddPeriod:
    def test_weekly(self):
        assert add_period(_utc(2024, 1, 1), Frequency.WEEKLY, 2) == _utc(2024, 1, 15)

    def test_quarterly_clamps(self):
        assert add_period(_utc(2024, 11, 30), Frequency.QUARTERLY) == _utc(2025, 2, 28)

    def test_yearly_from_leap_day(self):
        assert add_period(_utc(2024, 2, 29), Frequency.YEARLY) == _utc(2025, 2, 28)

    def test_accepts_frequency_value(self):
        assert add_period(_utc(2024, 1, 1), "monthly") == _utc(2024, 2, 1)

    def test_negative_periods_rejected(self):
        with pytest.raises(ValueError):
            add_period(_utc(2024, 1, 1), Frequency.MONTHLY, -1)


class TestAnchoredCycles:
    def test_month_end_start_does_not_drift(self):
        start = _utc(2024, 1, 31)
        dates = [due_date_for_cycle(start, Frequency.MONTHLY, n) for n in range(4)]

        assert dates == [
            _utc(2024, 1, 31),
            _utc(2024, 2, 29),
            _utc(2024, 3, 31),
            _utc(2024, 4, 30),
        ]

    def test_first_cycle_after_exact_due_date_moves_on(self):
        start = _utc(2024, 1, 1)
        assert first_cycle_after(start, Frequency.MONTHLY, start) == 1

    def test_first_cycle_after_skips_missed_cycles(self):
        start = _utc(2024, 1, 1)
        assert first_cycle_after(start, Frequency.MONTHLY, _utc(2024, 3, 15), 1) == 3

    def test_first_cycle_after_respects_lower_bound(self):
        start = _utc(2024, 1, 1)
        assert first_cycle_after(start, Frequency.WEEKLY, _utc(2023, 12, 1), 5) == 5


class TestRecurrenceProperties:
    @given(
        start=st.datetimes(
            min_value=datetime(2000, 1, 1),
            max_value=datetime(2090, 12, 31),
            timezones=st.just(timezone.utc),
        ),
        frequency=st.sampled_from(list(Frequency)),
        cycles=st.integers(1, 60),
    )
    def test_due_dates_strictly_increase(self, start, frequency, cycles):
        dates = [due_date_for_cycle(start, frequency, n) for n in range(cycles + 1)]
        assert all(a < b for a, b in zip(dates, dates[1:]))

    @given(
        start=st.datetimes(
            min_value=datetime(2000, 1, 1),
            max_value=datetime(2090, 12, 31),
            timezones=st.just(timezone.utc),
        ),
        months=st.integers(0, 240),
    )
    def test_day_never_exceeds_start_day(self, start, months):
        shifted = add_months(start, months)

        assert shifted.day <= start.day
        assert shifted.time() == start.time()
        if shifted.day < start.day:
            # Clamped: landed on the last day of a shorter month
            assert (shifted + timedelta(days=1)).month != shifted.month
