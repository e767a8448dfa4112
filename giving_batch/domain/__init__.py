"""
giving_batch.domain -- Pure types and recurrence arithmetic for recurring giving.

ZERO I/O.  All types are frozen dataclasses.
"""

from giving_batch.domain.recurrence import (
    add_months,
    add_period,
    due_date_for_cycle,
    first_cycle_after,
)
from giving_batch.domain.types import (
    TERMINAL_PLAN_STATUSES,
    Frequency,
    PlanStatus,
    RecurringPlanView,
    TickResult,
)

__all__ = [
    "Frequency",
    "PlanStatus",
    "RecurringPlanView",
    "TERMINAL_PLAN_STATUSES",
    "TickResult",
    "add_months",
    "add_period",
    "due_date_for_cycle",
    "first_cycle_after",
]
