"""
Module: giving_kernel.selectors.transaction_selector
Responsibility: Read-only queries over giving transactions -- lookups,
    payer history, refund chains, due retries and giving totals.
Architecture position: Kernel > Selectors.

All amounts are summed in SQL over integer minor units.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import case, func, select

from giving_kernel.domain.dtos import (
    GivingSummary,
    TransactionStatus,
    TransactionType,
    TransactionView,
)
from giving_kernel.models.transaction import OPEN_STATUSES, GivingTransaction
from giving_kernel.selectors.base import BaseSelector


class TransactionSelector(BaseSelector[GivingTransaction]):
    def get(self, transaction_id: UUID) -> TransactionView | None:
        tx = self.session.get(GivingTransaction, transaction_id)
        return TransactionView.from_model(tx) if tx is not None else None

    def get_by_reference(self, reference: str) -> TransactionView | None:
        tx = self.session.execute(
            select(GivingTransaction).where(GivingTransaction.reference == reference)
        ).scalar_one_or_none()
        return TransactionView.from_model(tx) if tx is not None else None

    def list_for_payer(
        self,
        payer_id: UUID,
        *,
        status: TransactionStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TransactionView]:
        """Payer history, newest first."""
        query = (
            select(GivingTransaction)
            .where(GivingTransaction.payer_id == payer_id)
            .order_by(GivingTransaction.created_at.desc(), GivingTransaction.reference.desc())
            .offset(offset)
        )
        if status is not None:
            query = query.where(GivingTransaction.status == status.value)
        if limit is not None:
            query = query.limit(limit)
        return [TransactionView.from_model(tx) for tx in self.session.execute(query).scalars()]

    def list_all(
        self,
        *,
        status: TransactionStatus | None = None,
        transaction_type: TransactionType | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TransactionView]:
        query = (
            select(GivingTransaction)
            .order_by(GivingTransaction.created_at.desc(), GivingTransaction.reference.desc())
            .offset(offset)
        )
        if status is not None:
            query = query.where(GivingTransaction.status == status.value)
        if transaction_type is not None:
            query = query.where(GivingTransaction.transaction_type == transaction_type.value)
        if limit is not None:
            query = query.limit(limit)
        return [TransactionView.from_model(tx) for tx in self.session.execute(query).scalars()]

    def list_for_plan(self, plan_id: UUID) -> list[TransactionView]:
        rows = self.session.execute(
            select(GivingTransaction)
            .where(GivingTransaction.plan_id == plan_id)
            .order_by(GivingTransaction.created_at)
        ).scalars()
        return [TransactionView.from_model(tx) for tx in rows]

    def list_refunds(self, original_transaction_id: UUID) -> list[TransactionView]:
        rows = self.session.execute(
            select(GivingTransaction)
            .where(
                GivingTransaction.original_transaction_id == original_transaction_id,
                GivingTransaction.transaction_type == TransactionType.REFUND.value,
            )
            .order_by(GivingTransaction.created_at, GivingTransaction.reference)
        ).scalars()
        return [TransactionView.from_model(tx) for tx in rows]

    def refunded_total(self, original_transaction_id: UUID) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(GivingTransaction.net_amount), 0)).where(
                GivingTransaction.original_transaction_id == original_transaction_id,
                GivingTransaction.transaction_type == TransactionType.REFUND.value,
            )
        ).scalar_one()
        return int(total)

    def list_due_retries(self, now: datetime) -> list[TransactionView]:
        rows = self.session.execute(
            select(GivingTransaction)
            .where(
                GivingTransaction.status == TransactionStatus.FAILED.value,
                GivingTransaction.next_retry_at.is_not(None),
                GivingTransaction.next_retry_at <= now,
            )
            .order_by(GivingTransaction.next_retry_at)
        ).scalars()
        return [TransactionView.from_model(tx) for tx in rows]

    def summarize(self, payer_id: UUID | None = None) -> GivingSummary:
        """
        Totals over payment transactions, optionally for one payer.

        ``pending_count`` covers every open status (pending, retrying,
        processing).  Refunds are reported separately and are not
        subtracted from the completed totals.
        """
        is_completed = GivingTransaction.status == TransactionStatus.COMPLETED.value
        open_values = [s.value for s in OPEN_STATUSES]

        def completed_sum(column):
            return func.coalesce(func.sum(case((is_completed, column), else_=0)), 0)

        def count_where(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        payments = select(
            completed_sum(GivingTransaction.gross_amount),
            completed_sum(GivingTransaction.net_amount),
            completed_sum(GivingTransaction.fee_amount),
            count_where(is_completed),
            count_where(GivingTransaction.status.in_(open_values)),
            count_where(GivingTransaction.status == TransactionStatus.FAILED.value),
        ).where(GivingTransaction.transaction_type == TransactionType.PAYMENT.value)

        refunds = select(
            func.coalesce(func.sum(GivingTransaction.net_amount), 0)
        ).where(GivingTransaction.transaction_type == TransactionType.REFUND.value)

        if payer_id is not None:
            payments = payments.where(GivingTransaction.payer_id == payer_id)
            refunds = refunds.where(GivingTransaction.payer_id == payer_id)

        gross, net, fees, completed, pending, failed = self.session.execute(payments).one()
        refunded = self.session.execute(refunds).scalar_one()
        return GivingSummary(
            completed_gross=int(gross),
            completed_net=int(net),
            completed_fees=int(fees),
            refunded_total=int(refunded),
            completed_count=int(completed),
            pending_count=int(pending),
            failed_count=int(failed),
        )
