"""
giving_batch.domain.types -- Pure frozen dataclasses for recurring giving.

ZERO I/O.  Follows the kernel DTO pattern: frozen dataclasses with enum
status fields, tuples for immutable collections, and ``from_model``
boundary converters called only from services and selectors.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from giving_batch.models.plan import RecurringPlan


class Frequency(str, Enum):
    """How often a plan gives."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class PlanStatus(str, Enum):
    """Recurring plan lifecycle status."""

    ACTIVE = "active"
    PAUSED = "paused"  # Manually, or after consecutive cycles that failed for good
    CANCELLED = "cancelled"  # Stopped by the payer
    COMPLETED = "completed"  # End date passed or max payments reached


TERMINAL_PLAN_STATUSES = frozenset({PlanStatus.CANCELLED, PlanStatus.COMPLETED})


@dataclass(frozen=True)
class RecurringPlanView:
    """Read-only projection of a plan for member self-service screens."""

    id: UUID
    payer_id: UUID
    category_id: UUID
    payment_method_id: UUID
    amount: int
    frequency: Frequency
    status: PlanStatus
    is_active: bool
    start_date: datetime
    end_date: datetime | None
    next_due_date: datetime
    cycle_number: int
    max_payments: int | None
    occurrences: int
    last_payment_date: datetime | None
    failure_count: int
    pause_reason: str | None
    phone_number: str | None
    network: str | None
    in_flight_transaction_id: UUID | None
    notes: str | None

    @property
    def remaining_payments(self) -> int | None:
        if self.max_payments is None:
            return None
        return max(0, self.max_payments - self.occurrences)

    @classmethod
    def from_model(cls, plan: RecurringPlan) -> RecurringPlanView:
        return cls(
            id=plan.id,
            payer_id=plan.payer_id,
            category_id=plan.category_id,
            payment_method_id=plan.payment_method_id,
            amount=plan.amount,
            frequency=Frequency(plan.frequency),
            status=PlanStatus(plan.status),
            is_active=plan.is_active,
            start_date=plan.start_date,
            end_date=plan.end_date,
            next_due_date=plan.next_due_date,
            cycle_number=plan.cycle_number,
            max_payments=plan.max_payments,
            occurrences=plan.occurrences,
            last_payment_date=plan.last_payment_date,
            failure_count=plan.failure_count,
            pause_reason=plan.pause_reason,
            phone_number=plan.phone_number,
            network=plan.network,
            in_flight_transaction_id=plan.in_flight_transaction_id,
            notes=plan.notes,
        )


@dataclass(frozen=True)
class TickResult:
    """What one scheduler tick did."""

    as_of: datetime
    charged: tuple[tuple[UUID, UUID], ...] = ()  # (plan_id, transaction_id)
    completed_plans: tuple[UUID, ...] = ()
    waiting_plans: tuple[UUID, ...] = ()  # Previous cycle still in flight
    errors: tuple[tuple[UUID, str], ...] = ()

    @property
    def charged_count(self) -> int:
        return len(self.charged)
