"""
Pure recurrence arithmetic for recurring giving plans.

Contract:
    ``add_period`` and ``due_date_for_cycle`` are PURE -- no I/O, no clock.
    The scheduler passes every timestamp in.

Architecture: giving_batch/domain.  ZERO I/O.

Invariants enforced:
    - Calendar arithmetic: "same day next month", clamped to the last day
      of the target month when that day does not exist (Jan 31 -> Feb 29).
    - Due dates are anchored on the plan's start date, so a clamped month
      never drags later cycles off the original day of month.
    - Time of day and tzinfo are carried over unchanged.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from giving_batch.domain.types import Frequency

_MONTHS_PER_PERIOD = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def add_months(start: datetime, months: int) -> datetime:
    """Shift ``start`` by whole calendar months, clamping the day."""
    year, month_index = divmod(start.month - 1 + months, 12)
    year += start.year
    month = month_index + 1
    last_day = calendar.monthrange(year, month)[1]
    return start.replace(year=year, month=month, day=min(start.day, last_day))


def add_period(start: datetime, frequency: Frequency, periods: int = 1) -> datetime:
    """
    ``start`` advanced by ``periods`` whole periods of ``frequency``.

    Raises:
        ValueError: negative ``periods``.
    """
    if periods < 0:
        raise ValueError(f"periods must be >= 0, got {periods}")
    frequency = Frequency(frequency)
    if frequency == Frequency.WEEKLY:
        return start + timedelta(weeks=periods)
    return add_months(start, _MONTHS_PER_PERIOD[frequency] * periods)


def due_date_for_cycle(start: datetime, frequency: Frequency, cycle_number: int) -> datetime:
    """Due date of cycle ``cycle_number`` (0 is the start date itself)."""
    return add_period(start, frequency, cycle_number)


def first_cycle_after(
    start: datetime,
    frequency: Frequency,
    after: datetime,
    from_cycle: int = 0,
) -> int:
    """Smallest cycle number >= ``from_cycle`` whose due date is after ``after``."""
    cycle = from_cycle
    while due_date_for_cycle(start, frequency, cycle) <= after:
        cycle += 1
    return cycle
