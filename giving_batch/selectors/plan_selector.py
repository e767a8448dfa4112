"""
Read-only queries over recurring giving plans.

Architecture: giving_batch/selectors.  Returns RecurringPlanView DTOs only.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from giving_kernel.selectors.base import BaseSelector

from giving_batch.domain.types import PlanStatus, RecurringPlanView
from giving_batch.models.plan import RecurringPlan


class PlanSelector(BaseSelector[RecurringPlan]):
    def get(self, plan_id: UUID) -> RecurringPlanView | None:
        plan = self.session.get(RecurringPlan, plan_id)
        return plan.to_dto() if plan is not None else None

    def list_for_payer(
        self,
        payer_id: UUID,
        status: PlanStatus | None = None,
    ) -> list[RecurringPlanView]:
        """A payer's plans, newest first."""
        query = (
            select(RecurringPlan)
            .where(RecurringPlan.payer_id == payer_id)
            .order_by(RecurringPlan.created_at.desc())
        )
        if status is not None:
            query = query.where(RecurringPlan.status == status.value)
        return [plan.to_dto() for plan in self.session.execute(query).scalars()]

    def list_due(self, now: datetime) -> list[RecurringPlanView]:
        rows = self.session.execute(
            select(RecurringPlan)
            .where(
                RecurringPlan.status == PlanStatus.ACTIVE.value,
                RecurringPlan.next_due_date <= now,
            )
            .order_by(RecurringPlan.next_due_date)
        ).scalars()
        return [plan.to_dto() for plan in rows]
