"""
giving_batch.models -- ORM models for recurring giving persistence.

Architecture: giving_batch/models. Imports from giving_kernel.db only.
"""

from giving_batch.models.plan import PLAN_TRANSITIONS, RecurringPlan

__all__ = [
    "PLAN_TRANSITIONS",
    "RecurringPlan",
]
