"""Recurring plan scheduling and the background worker."""

from giving_batch.services.recurring_scheduler import RecurringPlanScheduler
from giving_batch.services.worker import GivingWorker, WorkerTickResult

__all__ = [
    "GivingWorker",
    "RecurringPlanScheduler",
    "WorkerTickResult",
]
