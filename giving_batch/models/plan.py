"""
ORM model for recurring giving plans.

Contract:
    RecurringPlan persists a standing instruction to give ``amount`` every
    ``frequency`` from ``start_date``.  ``to_dto()`` returns the frozen
    RecurringPlanView.

Architecture: giving_batch/models.  Imports from giving_kernel.db only.

Invariants enforced:
    - ``next_due_date`` always equals
      ``add_period(start_date, frequency, cycle_number)``.
    - ``is_active`` is True exactly when ``status`` is ``active``.
    - Every charge carries a distinct reference built from
      ``attempt_count``, which only ever grows.
    - At most one transaction per plan is in flight
      (``in_flight_transaction_id``).
    - ``version`` guards concurrent ticks against the same plan.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from giving_kernel.db.base import TrackedBase, UUIDString
from giving_kernel.db.types import MinorUnits

if TYPE_CHECKING:
    from giving_batch.domain.types import PlanStatus, RecurringPlanView

PLAN_TRANSITIONS: dict[str, frozenset[str]] = {
    "active": frozenset({"paused", "cancelled", "completed"}),
    "paused": frozenset({"active", "cancelled", "completed"}),
    "cancelled": frozenset(),
    "completed": frozenset(),
}


class RecurringPlan(TrackedBase):
    __tablename__ = "recurring_plans"

    __table_args__ = (
        CheckConstraint("amount >= 1", name="ck_recurring_plan_amount_positive"),
        CheckConstraint("occurrences >= 0", name="ck_recurring_plan_occurrences"),
        CheckConstraint("failure_count >= 0", name="ck_recurring_plan_failures"),
        CheckConstraint("attempt_count >= 0", name="ck_recurring_plan_attempts"),
        Index("ix_recurring_plans_due", "status", "next_due_date"),
        Index("ix_recurring_plans_payer", "payer_id"),
    )

    payer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    category_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    payment_method_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payment_methods.id"), nullable=False
    )
    amount: Mapped[MinorUnits] = mapped_column(nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)

    phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    network: Mapped[str | None] = mapped_column(String(30), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    start_date: Mapped[datetime] = mapped_column(nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    next_due_date: Mapped[datetime] = mapped_column(nullable=False)
    cycle_number: Mapped[int] = mapped_column(nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pause_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    max_payments: Mapped[int | None] = mapped_column(nullable=True)
    occurrences: Mapped[int] = mapped_column(nullable=False, default=0)
    last_payment_date: Mapped[datetime | None] = mapped_column(nullable=True)
    failure_count: Mapped[int] = mapped_column(nullable=False, default=0)
    # Charges ever created for this plan; never reset
    attempt_count: Mapped[int] = mapped_column(nullable=False, default=0)

    in_flight_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("giving_transactions.id"), nullable=True
    )

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_enum(self) -> PlanStatus:
        from giving_batch.domain.types import PlanStatus

        return PlanStatus(self.status)

    def can_transition_to(self, target: str) -> bool:
        return target in PLAN_TRANSITIONS.get(self.status, frozenset())

    def to_dto(self) -> RecurringPlanView:
        from giving_batch.domain.types import RecurringPlanView

        return RecurringPlanView.from_model(self)

    def __repr__(self) -> str:
        return f"<RecurringPlan {self.id} {self.frequency} {self.amount} {self.status}>"
