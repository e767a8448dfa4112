"""
RetryCoordinator -- re-attempts failed transactions on the backoff schedule.

Responsibility:
    Answers "may this transaction be retried, and when?" using the ledger's
    RetryPolicy, and runs due retries: each one moves the transaction
    FAILED -> RETRYING (retry_count + 1) and opens a brand-new gateway
    session bound to the same transaction id.

Architecture position:
    Kernel > Services -- imperative shell.  Invoked by the background
    worker on every tick, and by operators through ``retry_now`` /
    ``abandon``.

Invariants enforced:
    - Only FAILED transactions with a scheduled ``next_retry_at`` that has
      passed are retried; permanent failures never are.
    - At most ``RetryPolicy.max_retries`` retries per transaction; after the
      last one the transaction stays FAILED.
    - Expired sessions are never reused.
    - Each retry runs in its own SAVEPOINT; one bad transaction does not
      abort the rest of the run.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from giving_kernel.domain.clock import Clock
from giving_kernel.domain.dtos import TransactionStatus, TransactionType
from giving_kernel.exceptions import GivingKernelError, SessionNotApplicableError
from giving_kernel.logging_config import LogContext, get_logger
from giving_kernel.models.gateway_session import GatewaySession
from giving_kernel.models.transaction import GivingTransaction
from giving_kernel.services.base import BaseService
from giving_kernel.services.gateway_session_manager import GatewaySessionManager
from giving_kernel.services.ledger_service import TransactionLedger

logger = get_logger("services.retry_coordinator")


@dataclass(frozen=True)
class RetryRunResult:
    retried: tuple[UUID, ...] = ()
    errors: tuple[tuple[UUID, str], ...] = ()

    @property
    def retried_count(self) -> int:
        return len(self.retried)


class RetryCoordinator(BaseService[GivingTransaction]):
    def __init__(
        self,
        session: Session,
        clock: Clock,
        ledger: TransactionLedger,
        session_manager: GatewaySessionManager,
    ):
        super().__init__(session)
        self._clock = clock
        self._ledger = ledger
        self._sessions = session_manager

    def should_retry(self, tx: GivingTransaction) -> tuple[bool, datetime | None]:
        """
        Policy view of one transaction: ``(eligible, next_retry_at)``.

        Recomputed from the failure reason and retry count rather than read
        back from the row, so it also answers for transactions failed before
        a policy change.
        """
        if (
            tx.status_enum != TransactionStatus.FAILED
            or tx.type_enum != TransactionType.PAYMENT
            or tx.failed_at is None
        ):
            return False, None
        decision = self._ledger.retry_policy.should_retry(
            tx.retry_count, tx.failure_reason, tx.failed_at
        )
        return decision.should_retry, decision.next_retry_at

    def due(self, now: datetime | None = None) -> list[GivingTransaction]:
        now = now or self._clock.now()
        return list(
            self.session.execute(
                select(GivingTransaction)
                .where(
                    GivingTransaction.status == TransactionStatus.FAILED.value,
                    GivingTransaction.next_retry_at.is_not(None),
                    GivingTransaction.next_retry_at <= now,
                    GivingTransaction.retry_count < self._ledger.retry_policy.max_retries,
                )
                .order_by(GivingTransaction.next_retry_at)
            ).scalars()
        )

    def run_due(self, now: datetime | None = None) -> RetryRunResult:
        """Retry every transaction whose next attempt is due."""
        now = now or self._clock.now()
        candidates = self.due(now)
        retried: list[UUID] = []
        errors: list[tuple[UUID, str]] = []

        for tx in candidates:
            tx_id = tx.id
            savepoint = self.session.begin_nested()
            try:
                self._retry(tx_id)
            except SessionNotApplicableError as exc:
                savepoint.rollback()
                # Non-gateway rails have nothing to re-send
                self._ledger.abandon_retries(tx_id, exc.code)
                errors.append((tx_id, exc.code))
                continue
            except GivingKernelError as exc:
                savepoint.rollback()
                logger.warning(
                    "retry_attempt_error",
                    extra={
                        "transaction_id": str(tx_id),
                        "error_code": exc.code,
                        "error": str(exc),
                    },
                )
                errors.append((tx_id, exc.code))
                continue
            savepoint.commit()
            retried.append(tx_id)

        result = RetryRunResult(retried=tuple(retried), errors=tuple(errors))
        logger.info(
            "retry_run_completed",
            extra={
                "candidate_count": len(candidates),
                "retried_count": result.retried_count,
                "error_count": len(result.errors),
            },
        )
        return result

    def retry_now(self, transaction_id: UUID) -> GatewaySession:
        """
        Run one retry immediately if it is due.

        Raises:
            RetryNotAllowedError: not failed, not due, or retries exhausted.
        """
        return self._retry(transaction_id)

    def abandon(self, transaction_id: UUID, reason: str) -> GivingTransaction:
        """Give up on a failed transaction; it stays FAILED permanently."""
        return self._ledger.abandon_retries(transaction_id, reason)

    def _retry(self, transaction_id: UUID) -> GatewaySession:
        with LogContext.bind(transaction_id=transaction_id):
            tx = self._ledger.begin_retry(transaction_id)
            logger.info(
                "retry_attempt_started",
                extra={
                    "retry_count": tx.retry_count,
                    "previous_failure_reason": tx.failure_reason,
                },
            )
            return self._sessions.open_session(tx.id)
