"""
TransactionLedger -- sole writer of transaction state.

Responsibility:
    Creates giving transactions with fee/net computed by the Fee Policy and
    drives them through the status state machine: processing, completion,
    failure (with retry scheduling), retry re-binding, cancellation, manual
    settlement, and linked refund/adjustment markers.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the Gateway Session
    Manager (reconciliation), the Retry Coordinator (retry re-binding), the
    Recurring Plan Scheduler (materializing plan cycles) and the giving
    facade.  The ledger never reaches into gateway session state.

Invariants enforced:
    - net + fee == gross on every row; the amounts are computed here, once.
    - Status edges follow VALID_TRANSITIONS; an illegal edge raises
      InvalidTransitionError before anything is modified.
    - Settlement is exactly-once: completing twice with the same gateway
      transaction id is a no-op, with a different id a DuplicateSettlementError.
    - Cumulative refunds never exceed the original net amount; the original
      row is locked (SELECT ... FOR UPDATE) so concurrent refunds serialize.
    - ``reference`` is an idempotency key: replaying a create with the same
      reference and parameters returns the existing transaction.

Failure modes:
    - InvalidAmountError, PaymentMethodNotFoundError/InactiveError on create.
    - TransactionNotFoundError, InvalidTransitionError on state changes.
    - IdempotencyConflictError, DuplicateSettlementError,
      RefundExceedsOriginalError, TransactionNotRefundableError,
      RetryNotAllowedError.
    - OptimisticLockError when a versioned row changed underneath us.

Events:
    TRANSACTION_COMPLETED, TRANSACTION_FAILED (``final`` flag set when no
    retry will follow), TRANSACTION_CANCELLED, TRANSACTION_REFUNDED.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from giving_kernel.domain.clock import Clock
from giving_kernel.domain.dtos import PaymentStatus, TransactionStatus, TransactionType
from giving_kernel.domain.fee_policy import apply_fee_policy
from giving_kernel.domain.notifications import EventKind, EventPublisher, GivingEvent
from giving_kernel.domain.retry_policy import RetryDecision, RetryPolicy
from giving_kernel.exceptions import (
    DuplicateSettlementError,
    IdempotencyConflictError,
    InvalidAmountError,
    InvalidGivingRequestError,
    RefundExceedsOriginalError,
    RetryNotAllowedError,
    TransactionNotFoundError,
    TransactionNotRefundableError,
)
from giving_kernel.logging_config import LogContext, get_logger
from giving_kernel.models.transaction import GivingTransaction
from giving_kernel.services.base import BaseService
from giving_kernel.services.payment_method_registry import (
    SYSTEM_ACTOR_ID,
    PaymentMethodRegistry,
)

logger = get_logger("services.ledger")


class TransactionLedger(BaseService[GivingTransaction]):
    """
    Authoritative record and state machine for monetary movements.

    Guarantees:
        - Every mutation loads the row with a row-level lock first.
        - Every mutation is flushed, never committed.
        - Every state change is logged with the transaction id and both
          statuses.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        *,
        registry: PaymentMethodRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        publisher: EventPublisher | None = None,
    ):
        super().__init__(session)
        self._clock = clock
        self._registry = registry or PaymentMethodRegistry(session, clock)
        self._retry_policy = retry_policy or RetryPolicy()
        self._publisher = publisher or EventPublisher()

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, transaction_id: UUID) -> GivingTransaction:
        tx = self.session.get(GivingTransaction, transaction_id)
        if tx is None:
            raise TransactionNotFoundError(str(transaction_id))
        return tx

    def get_for_update(self, transaction_id: UUID) -> GivingTransaction:
        tx = self._get_for_update(GivingTransaction, transaction_id)
        if tx is None:
            raise TransactionNotFoundError(str(transaction_id))
        return tx

    def find_by_reference(self, reference: str) -> GivingTransaction | None:
        return self.session.execute(
            select(GivingTransaction).where(GivingTransaction.reference == reference)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        payer_id: UUID,
        payment_method_id: UUID,
        category_id: UUID,
        gross_amount: int,
        description: str | None = None,
        *,
        reference: str | None = None,
        phone_number: str | None = None,
        network: str | None = None,
        account_number: str | None = None,
        plan_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> GivingTransaction:
        """
        Record a new pending payment.

        Fee and net come from the method's fee schedule.  When ``reference``
        is supplied and already recorded with the same payer, method,
        category and amount, the existing transaction is returned instead.

        Raises:
            InvalidAmountError: gross outside the method's limits.
            IdempotencyConflictError: reference reused with other parameters.
        """
        method = self._registry.get_active(payment_method_id)
        breakdown = apply_fee_policy(method, gross_amount)

        if reference is not None:
            existing = self.find_by_reference(reference)
            if existing is not None:
                return self._replay(existing, payer_id, payment_method_id,
                                    category_id, gross_amount)

        now = self._clock.now()
        tx = GivingTransaction(
            reference=reference or self._generate_reference(now),
            payer_id=payer_id,
            payment_method_id=payment_method_id,
            category_id=category_id,
            gross_amount=breakdown.gross,
            fee_amount=breakdown.fee,
            net_amount=breakdown.net,
            currency=method.currency,
            status=TransactionStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            transaction_type=TransactionType.PAYMENT.value,
            description=description,
            phone_number=phone_number,
            network=network,
            account_number=account_number,
            retry_count=0,
            plan_id=plan_id,
            created_by_id=actor_id or payer_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(tx)
        self.session.flush()

        logger.info(
            "transaction_created",
            extra={
                "transaction_id": str(tx.id),
                "reference": tx.reference,
                "payer_id": str(payer_id),
                "method_code": method.code,
                "gross_amount": tx.gross_amount,
                "fee_amount": tx.fee_amount,
                "net_amount": tx.net_amount,
                "currency": tx.currency,
                "plan_id": str(plan_id) if plan_id else None,
            },
        )
        return tx

    def _replay(
        self,
        existing: GivingTransaction,
        payer_id: UUID,
        payment_method_id: UUID,
        category_id: UUID,
        gross_amount: int,
    ) -> GivingTransaction:
        same = (
            existing.payer_id == payer_id
            and existing.payment_method_id == payment_method_id
            and existing.category_id == category_id
            and existing.gross_amount == gross_amount
            and existing.type_enum == TransactionType.PAYMENT
        )
        if not same:
            logger.warning(
                "idempotency_conflict",
                extra={
                    "reference": existing.reference,
                    "existing_transaction_id": str(existing.id),
                },
            )
            raise IdempotencyConflictError(existing.reference, str(existing.id))
        logger.info(
            "transaction_create_replayed",
            extra={"transaction_id": str(existing.id), "reference": existing.reference},
        )
        return existing

    @staticmethod
    def _generate_reference(now: datetime) -> str:
        return f"GIV-{now:%Y%m%d}-{uuid4().hex[:12].upper()}"

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def mark_processing(self, transaction_id: UUID) -> GivingTransaction:
        """PENDING/RETRYING -> PROCESSING; payment status -> AUTHORIZED."""
        tx = self.get_for_update(transaction_id)
        tx.validate_transition(TransactionStatus.PROCESSING)
        previous = tx.status
        tx.status = TransactionStatus.PROCESSING.value
        tx.payment_status = PaymentStatus.AUTHORIZED.value
        tx.updated_at = self._clock.now()
        self._flush("GivingTransaction", tx.id)
        self._log_transition(tx, previous)
        return tx

    def mark_completed(
        self,
        transaction_id: UUID,
        gateway_tx_id: str,
        processed_at: datetime | None = None,
        processed_by: UUID | None = None,
    ) -> GivingTransaction:
        """
        PROCESSING -> COMPLETED; payment status -> CAPTURED.

        Idempotent on ``gateway_tx_id``.

        Raises:
            DuplicateSettlementError: already completed under a different
                gateway transaction id.
            InvalidTransitionError: not in PROCESSING.
        """
        tx = self.get_for_update(transaction_id)

        if tx.status_enum == TransactionStatus.COMPLETED:
            if tx.gateway_tx_id == gateway_tx_id:
                logger.info(
                    "settlement_replay_ignored",
                    extra={
                        "transaction_id": str(tx.id),
                        "gateway_tx_id": gateway_tx_id,
                    },
                )
                return tx
            logger.error(
                "duplicate_settlement_detected",
                extra={
                    "transaction_id": str(tx.id),
                    "existing_gateway_tx_id": tx.gateway_tx_id,
                    "received_gateway_tx_id": gateway_tx_id,
                },
            )
            raise DuplicateSettlementError(str(tx.id), tx.gateway_tx_id, gateway_tx_id)

        tx.validate_transition(TransactionStatus.COMPLETED)
        self._complete(tx, gateway_tx_id=gateway_tx_id,
                       processed_at=processed_at, processed_by=processed_by)
        return tx

    def _complete(
        self,
        tx: GivingTransaction,
        *,
        gateway_tx_id: str | None,
        processed_at: datetime | None,
        processed_by: UUID | None,
        external_reference: str | None = None,
    ) -> None:
        now = self._clock.now()
        previous = tx.status
        tx.status = TransactionStatus.COMPLETED.value
        tx.payment_status = PaymentStatus.CAPTURED.value
        tx.gateway_tx_id = gateway_tx_id
        tx.external_reference = external_reference
        tx.processed_at = processed_at or now
        tx.processed_by_id = processed_by
        tx.next_retry_at = None
        tx.updated_at = now
        self._flush("GivingTransaction", tx.id)
        self._log_transition(tx, previous, gateway_tx_id=gateway_tx_id)
        self._publisher.publish(
            GivingEvent(
                kind=EventKind.TRANSACTION_COMPLETED,
                occurred_at=now,
                transaction_id=tx.id,
                plan_id=tx.plan_id,
                payer_id=tx.payer_id,
                amount=tx.gross_amount,
                final=True,
            )
        )

    def mark_failed(
        self,
        transaction_id: UUID,
        reason: str,
    ) -> RetryDecision:
        """
        PENDING/RETRYING/PROCESSING -> FAILED; payment status -> FAILED.

        Records the reason and time, then asks the retry policy whether and
        when another attempt may run.  Returns that decision.
        """
        tx = self.get_for_update(transaction_id)
        tx.validate_transition(TransactionStatus.FAILED)

        now = self._clock.now()
        decision = self._retry_policy.should_retry(tx.retry_count, reason, now)

        previous = tx.status
        tx.status = TransactionStatus.FAILED.value
        tx.payment_status = PaymentStatus.FAILED.value
        tx.failure_reason = reason
        tx.failure_class = decision.failure_class.value
        tx.failed_at = now
        tx.next_retry_at = decision.next_retry_at
        tx.updated_at = now
        self._flush("GivingTransaction", tx.id)

        self._log_transition(tx, previous, reason=reason)
        if decision.should_retry:
            logger.info(
                "retry_scheduled",
                extra={
                    "transaction_id": str(tx.id),
                    "attempt_number": decision.attempt_number,
                    "next_retry_at": decision.next_retry_at,
                    "failure_class": decision.failure_class.value,
                },
            )
        else:
            logger.warning(
                "transaction_failed_permanently",
                extra={
                    "transaction_id": str(tx.id),
                    "reason": reason,
                    "retry_count": tx.retry_count,
                    "explanation": decision.explanation,
                },
            )

        self._publisher.publish(
            GivingEvent(
                kind=EventKind.TRANSACTION_FAILED,
                occurred_at=now,
                transaction_id=tx.id,
                plan_id=tx.plan_id,
                payer_id=tx.payer_id,
                amount=tx.gross_amount,
                reason=reason,
                final=decision.final,
            )
        )
        return decision

    def begin_retry(self, transaction_id: UUID) -> GivingTransaction:
        """
        FAILED -> RETRYING and retry_count + 1.  Retry Coordinator only.

        Raises:
            RetryNotAllowedError: not failed, no retry scheduled, retry not
                yet due, or retries exhausted.
        """
        tx = self.get_for_update(transaction_id)
        now = self._clock.now()

        if tx.status_enum != TransactionStatus.FAILED:
            raise RetryNotAllowedError(
                str(tx.id), f"status is {tx.status}, not 'failed'"
            )
        if tx.retry_count >= self._retry_policy.max_retries:
            raise RetryNotAllowedError(
                str(tx.id),
                f"maximum retry count ({self._retry_policy.max_retries}) reached",
            )
        if tx.next_retry_at is None:
            raise RetryNotAllowedError(str(tx.id), "no retry scheduled")
        if tx.next_retry_at > now:
            raise RetryNotAllowedError(
                str(tx.id), f"retry not due until {tx.next_retry_at.isoformat()}"
            )

        tx.validate_transition(TransactionStatus.RETRYING)
        previous = tx.status
        tx.status = TransactionStatus.RETRYING.value
        tx.retry_count += 1
        tx.next_retry_at = None
        tx.updated_at = now
        self._flush("GivingTransaction", tx.id)
        self._log_transition(tx, previous, retry_count=tx.retry_count)
        return tx

    def abandon_retries(self, transaction_id: UUID, reason: str) -> GivingTransaction:
        """Drop any scheduled retry; the transaction stays FAILED for good."""
        tx = self.get_for_update(transaction_id)
        if tx.status_enum != TransactionStatus.FAILED:
            raise RetryNotAllowedError(
                str(tx.id), f"status is {tx.status}, not 'failed'"
            )
        if tx.next_retry_at is None:
            return tx

        now = self._clock.now()
        tx.next_retry_at = None
        tx.updated_at = now
        self._flush("GivingTransaction", tx.id)
        logger.warning(
            "retries_abandoned",
            extra={"transaction_id": str(tx.id), "reason": reason},
        )
        self._publisher.publish(
            GivingEvent(
                kind=EventKind.TRANSACTION_FAILED,
                occurred_at=now,
                transaction_id=tx.id,
                plan_id=tx.plan_id,
                payer_id=tx.payer_id,
                amount=tx.gross_amount,
                reason=tx.failure_reason,
                final=True,
                details={"abandoned": reason},
            )
        )
        return tx

    def cancel(
        self,
        transaction_id: UUID,
        reason: str | None = None,
        actor_id: UUID | None = None,
    ) -> GivingTransaction:
        """PENDING/RETRYING/PROCESSING -> CANCELLED; payment status -> CANCELLED."""
        tx = self.get_for_update(transaction_id)
        tx.validate_transition(TransactionStatus.CANCELLED)

        now = self._clock.now()
        previous = tx.status
        tx.status = TransactionStatus.CANCELLED.value
        tx.payment_status = PaymentStatus.CANCELLED.value
        tx.failure_reason = reason
        tx.cancelled_at = now
        tx.next_retry_at = None
        tx.updated_by_id = actor_id
        tx.updated_at = now
        self._flush("GivingTransaction", tx.id)
        self._log_transition(tx, previous, reason=reason)
        self._publisher.publish(
            GivingEvent(
                kind=EventKind.TRANSACTION_CANCELLED,
                occurred_at=now,
                transaction_id=tx.id,
                plan_id=tx.plan_id,
                payer_id=tx.payer_id,
                amount=tx.gross_amount,
                reason=reason,
                final=True,
            )
        )
        return tx

    def record_manual_settlement(
        self,
        transaction_id: UUID,
        processed_by: UUID,
        external_reference: str | None = None,
    ) -> GivingTransaction:
        """
        Settle a non-gateway payment (cash, bank transfer) confirmed by staff.

        PENDING -> PROCESSING -> COMPLETED in one step.  Replaying with the
        same external reference is a no-op.
        """
        tx = self.get_for_update(transaction_id)
        method = self._registry.get(tx.payment_method_id)
        if method.requires_gateway_session:
            raise InvalidGivingRequestError(
                "payment_method",
                f"{method.name} payments settle through the gateway",
            )

        if (
            tx.status_enum == TransactionStatus.COMPLETED
            and tx.external_reference == external_reference
        ):
            return tx

        if tx.status_enum in (TransactionStatus.PENDING, TransactionStatus.RETRYING):
            self.mark_processing(tx.id)
        tx.validate_transition(TransactionStatus.COMPLETED)
        self._complete(
            tx,
            gateway_tx_id=None,
            processed_at=None,
            processed_by=processed_by,
            external_reference=external_reference,
        )
        return tx

    # ------------------------------------------------------------------
    # Refunds and adjustments
    # ------------------------------------------------------------------

    def refunded_total(self, original_id: UUID) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(GivingTransaction.net_amount), 0)).where(
                GivingTransaction.original_transaction_id == original_id,
                GivingTransaction.transaction_type == TransactionType.REFUND.value,
            )
        ).scalar_one()
        return int(total)

    def refund(
        self,
        original_transaction_id: UUID,
        amount: int,
        reason: str | None = None,
        actor_id: UUID | None = None,
    ) -> GivingTransaction:
        """
        Record a refund marker linked to a completed payment.

        The original's own status is unchanged.

        Raises:
            TransactionNotRefundableError: original is not a completed payment.
            InvalidAmountError: amount is not a positive integer.
            RefundExceedsOriginalError: cumulative refunds would exceed the
                original net amount.
        """
        original = self._lock_refundable(original_transaction_id)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
            raise InvalidAmountError(amount, minimum=1, reason="refund must be at least 1")

        already = self.refunded_total(original.id)
        if already + amount > original.net_amount:
            logger.warning(
                "refund_rejected_exceeds_original",
                extra={
                    "transaction_id": str(original.id),
                    "requested": amount,
                    "already_refunded": already,
                    "original_net": original.net_amount,
                },
            )
            raise RefundExceedsOriginalError(
                str(original.id), amount, already, original.net_amount
            )

        marker = self._marker(
            original,
            TransactionType.REFUND,
            TransactionStatus.REFUNDED,
            amount,
            reason,
            actor_id,
        )
        logger.info(
            "transaction_refunded",
            extra={
                "transaction_id": str(original.id),
                "refund_transaction_id": str(marker.id),
                "amount": amount,
                "refunded_total": already + amount,
            },
        )
        self._publisher.publish(
            GivingEvent(
                kind=EventKind.TRANSACTION_REFUNDED,
                occurred_at=marker.created_at,
                transaction_id=original.id,
                plan_id=original.plan_id,
                payer_id=original.payer_id,
                amount=amount,
                reason=reason,
                details={"refund_transaction_id": str(marker.id)},
            )
        )
        return marker

    def record_adjustment(
        self,
        original_transaction_id: UUID,
        amount: int,
        reason: str,
        actor_id: UUID | None = None,
    ) -> GivingTransaction:
        """
        Record a signed correction linked to a completed payment.

        The adjustment carries no fee; its net equals ``amount``.
        """
        original = self._lock_refundable(original_transaction_id)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise InvalidAmountError(amount, reason="adjustment must be a non-zero integer")

        marker = self._marker(
            original,
            TransactionType.ADJUSTMENT,
            TransactionStatus.COMPLETED,
            amount,
            reason,
            actor_id,
        )
        logger.info(
            "transaction_adjusted",
            extra={
                "transaction_id": str(original.id),
                "adjustment_transaction_id": str(marker.id),
                "amount": amount,
                "reason": reason,
            },
        )
        return marker

    def _lock_refundable(self, original_transaction_id: UUID) -> GivingTransaction:
        original = self.get_for_update(original_transaction_id)
        if (
            original.type_enum != TransactionType.PAYMENT
            or original.status_enum != TransactionStatus.COMPLETED
        ):
            raise TransactionNotRefundableError(
                str(original.id), original.status, original.transaction_type
            )
        return original

    def _marker(
        self,
        original: GivingTransaction,
        tx_type: TransactionType,
        status: TransactionStatus,
        amount: int,
        reason: str | None,
        actor_id: UUID | None,
    ) -> GivingTransaction:
        now = self._clock.now()
        sequence = self.session.execute(
            select(func.count(GivingTransaction.id)).where(
                GivingTransaction.original_transaction_id == original.id,
                GivingTransaction.transaction_type == tx_type.value,
            )
        ).scalar_one()
        suffix = "R" if tx_type == TransactionType.REFUND else "A"
        marker = GivingTransaction(
            reference=f"{original.reference}-{suffix}{sequence + 1}",
            payer_id=original.payer_id,
            payment_method_id=original.payment_method_id,
            category_id=original.category_id,
            gross_amount=amount,
            fee_amount=0,
            net_amount=amount,
            currency=original.currency,
            status=status.value,
            payment_status=PaymentStatus.CAPTURED.value,
            transaction_type=tx_type.value,
            description=reason,
            retry_count=0,
            original_transaction_id=original.id,
            processed_by_id=actor_id,
            processed_at=now,
            created_by_id=actor_id or SYSTEM_ACTOR_ID,
            created_at=now,
            updated_at=now,
        )
        self.session.add(marker)
        self.session.flush()
        return marker

    # ------------------------------------------------------------------

    def _log_transition(self, tx: GivingTransaction, previous: str, **fields) -> None:
        with LogContext.bind(transaction_id=tx.id):
            logger.info(
                "transaction_status_changed",
                extra={
                    "from_status": previous,
                    "to_status": tx.status,
                    "payment_status": tx.payment_status,
                    **fields,
                },
            )
