"""
GatewaySessionManager -- owns the handshake with the mobile-money gateway.

Responsibility:
    Opens a session for one transaction attempt, asks the gateway to prompt
    the payer, applies inbound callbacks exactly once, and expires sessions
    that outlive their window.  Every outcome is reconciled into the ledger;
    the flow is strictly session -> ledger.

Architecture position:
    Kernel > Services -- imperative shell.  Sole writer of
    ``gateway_sessions``.  Calls TransactionLedger for every transaction
    change and the PaymentGateway port for outbound charges.

Invariants enforced:
    - At most one INITIATED/PENDING session per transaction.
    - Session amount equals the transaction gross at creation and never
      changes.
    - A session past ``expires_at`` is never completed: the sweep (or a
      late callback) moves it to EXPIRED first.
    - The expiry sweep handles each session in its own SAVEPOINT; one
      failing row never undoes the others.
    - Terminal sessions ignore further callbacks.  Conflicting settlements
      are alerts, never exceptions, at this boundary.

State machine:
    INITIATED -> PENDING -> {COMPLETED, FAILED, EXPIRED}
    (INITIATED may also resolve directly when the gateway acknowledgement
    was lost in transit.)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from giving_kernel.domain.clock import Clock
from giving_kernel.domain.dtos import (
    ACTIVE_SESSION_STATUSES,
    CallbackOutcome,
    CallbackResult,
    ChargeRequest,
    GatewayCallback,
    SessionStatus,
    TransactionStatus,
)
from giving_kernel.domain.notifications import EventKind, EventPublisher, GivingEvent
from giving_kernel.domain.retry_policy import FailureReason
from giving_kernel.exceptions import (
    DuplicateSettlementError,
    GatewayPermanentError,
    GatewayTransientError,
    GivingKernelError,
    SessionAlreadyActiveError,
    SessionExpiredError,
    SessionNotApplicableError,
    SessionNotFoundError,
)
from giving_kernel.gateway.base import PaymentGateway
from giving_kernel.logging_config import LogContext, get_logger
from giving_kernel.models.gateway_session import GatewaySession
from giving_kernel.models.transaction import GivingTransaction
from giving_kernel.services.base import BaseService
from giving_kernel.services.ledger_service import TransactionLedger
from giving_kernel.services.payment_method_registry import PaymentMethodRegistry

logger = get_logger("services.gateway_session_manager")

DEFAULT_SESSION_WINDOW = timedelta(minutes=15)

_CHARGEABLE_STATUSES = frozenset({TransactionStatus.PENDING, TransactionStatus.RETRYING})


@dataclass(frozen=True)
class SweepResult:
    expired_session_ids: tuple[UUID, ...] = ()
    failed_transaction_ids: tuple[UUID, ...] = ()
    errors: tuple[tuple[UUID, str], ...] = ()

    @property
    def expired_count(self) -> int:
        return len(self.expired_session_ids)


@dataclass
class _SweepAccumulator:
    expired: list[UUID] = field(default_factory=list)
    failed: list[UUID] = field(default_factory=list)
    errors: list[tuple[UUID, str]] = field(default_factory=list)

    def freeze(self) -> SweepResult:
        return SweepResult(tuple(self.expired), tuple(self.failed), tuple(self.errors))


class GatewaySessionManager(BaseService[GatewaySession]):
    def __init__(
        self,
        session: Session,
        clock: Clock,
        ledger: TransactionLedger,
        gateway: PaymentGateway,
        *,
        registry: PaymentMethodRegistry | None = None,
        publisher: EventPublisher | None = None,
        session_window: timedelta = DEFAULT_SESSION_WINDOW,
    ):
        super().__init__(session)
        self._clock = clock
        self._ledger = ledger
        self._gateway = gateway
        self._registry = registry or PaymentMethodRegistry(session, clock)
        self._publisher = publisher or EventPublisher()
        self._window = session_window

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, session_id: UUID) -> GatewaySession:
        row = self.session.get(GatewaySession, session_id)
        if row is None:
            raise SessionNotFoundError(str(session_id))
        return row

    def active_session_for(self, transaction_id: UUID) -> GatewaySession | None:
        return self.session.execute(
            select(GatewaySession)
            .where(
                GatewaySession.transaction_id == transaction_id,
                GatewaySession.status.in_([s.value for s in ACTIVE_SESSION_STATUSES]),
            )
            .order_by(GatewaySession.created_at.desc())
        ).scalars().first()

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def open_session(
        self,
        transaction_id: UUID,
        actor_id: UUID | None = None,
    ) -> GatewaySession:
        """
        Open a fresh session for a PENDING (or RETRYING) transaction and ask
        the gateway to prompt the payer.  Returns without waiting for the
        payer; the result arrives as a callback or through expiry.

        Gateway acknowledgement: session -> PENDING, transaction -> PROCESSING.
        Transient gateway error: session stays INITIATED (the prompt may
        still have reached the payer).
        Permanent gateway error: session -> FAILED, transaction -> FAILED.

        Raises:
            SessionNotApplicableError: wrong transaction status, or the
                payment method has no gateway capability.
            SessionAlreadyActiveError: a live session already exists.
        """
        tx = self._ledger.get_for_update(transaction_id)
        if tx.status_enum not in _CHARGEABLE_STATUSES:
            raise SessionNotApplicableError(
                str(tx.id), f"transaction is {tx.status}, expected pending"
            )
        method = self._registry.get(tx.payment_method_id)
        if not method.requires_gateway_session:
            raise SessionNotApplicableError(
                str(tx.id), f"{method.name} does not use the payment gateway"
            )

        live = self.active_session_for(tx.id)
        if live is not None:
            raise SessionAlreadyActiveError(str(tx.id), str(live.id))

        now = self._clock.now()
        row = GatewaySession(
            transaction_id=tx.id,
            phone_number=tx.phone_number,
            network=tx.network,
            amount=tx.gross_amount,
            currency=tx.currency,
            status=SessionStatus.INITIATED.value,
            retry_count=tx.retry_count,
            expires_at=now + self._window,
            created_by_id=actor_id or tx.created_by_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        self.session.flush()

        with LogContext.bind(session_id=row.id, transaction_id=tx.id):
            logger.info(
                "gateway_session_opened",
                extra={
                    "amount": row.amount,
                    "network": row.network,
                    "retry_count": row.retry_count,
                    "expires_at": row.expires_at,
                },
            )
            self._initiate_charge(row, tx)
        return row

    def resend_prompt(self, session_id: UUID) -> GatewaySession:
        """
        Ask the gateway to prompt the payer again on a live session.

        Raises:
            SessionExpiredError: the session is past its expiry.
            SessionNotApplicableError: the session already finished.
        """
        row = self._lock(session_id)
        now = self._clock.now()
        if row.is_terminal:
            raise SessionNotApplicableError(
                str(row.transaction_id), f"session {row.id} is {row.status}"
            )
        if row.is_expired_at(now):
            raise SessionExpiredError(str(row.id), row.expires_at.isoformat())
        tx = self._ledger.get(row.transaction_id)
        with LogContext.bind(session_id=row.id, transaction_id=tx.id):
            self._initiate_charge(row, tx)
        return row

    def _initiate_charge(self, row: GatewaySession, tx: GivingTransaction) -> None:
        request = ChargeRequest(
            session_id=row.id,
            transaction_id=tx.id,
            reference=tx.reference,
            phone_number=row.phone_number,
            network=row.network,
            amount=row.amount,
            currency=row.currency,
        )
        try:
            ack = self._gateway.initiate_charge(request)
        except GatewayTransientError as exc:
            logger.warning(
                "gateway_initiation_transient_error",
                extra={"reason": exc.reason},
            )
            return
        except GatewayPermanentError as exc:
            logger.warning(
                "gateway_initiation_rejected",
                extra={"reason": exc.reason},
            )
            self._set_status(row, SessionStatus.FAILED, failure_reason=exc.reason)
            if tx.is_open:
                self._ledger.mark_failed(tx.id, exc.reason)
            return

        row.gateway_reference = ack.gateway_reference
        row.raw_response = dict(ack.raw_response)
        if row.status_enum == SessionStatus.INITIATED:
            self._set_status(row, SessionStatus.PENDING)
        else:
            self._flush("GatewaySession", row.id)
        if tx.status_enum in _CHARGEABLE_STATUSES:
            self._ledger.mark_processing(tx.id)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def on_gateway_callback(self, callback: GatewayCallback) -> CallbackOutcome:
        """
        Apply an inbound gateway result exactly once.

        Raises:
            SessionNotFoundError: unknown session id.  Nothing else escapes:
            duplicates, conflicts and late results are logged and reported
            through the returned CallbackOutcome.
        """
        row = self._lock(callback.session_id)
        with LogContext.bind(session_id=row.id, transaction_id=row.transaction_id):
            logger.info(
                "gateway_callback_received",
                extra={
                    "result": callback.result.value,
                    "gateway_tx_id": callback.gateway_tx_id,
                    "session_status": row.status,
                },
            )
            now = self._clock.now()
            if not row.is_terminal and row.is_expired_at(now):
                self._expire(row, now)

            if row.is_terminal:
                return self._callback_on_terminal(row, callback, now)
            if callback.result == CallbackResult.SUCCESS:
                return self._apply_success(row, callback, now)
            return self._apply_failure(row, callback, now)

    def _callback_on_terminal(
        self,
        row: GatewaySession,
        callback: GatewayCallback,
        now: datetime,
    ) -> CallbackOutcome:
        if callback.result != CallbackResult.SUCCESS:
            logger.info("gateway_callback_ignored_terminal", extra={"outcome": "duplicate"})
            return CallbackOutcome.DUPLICATE_IGNORED

        if row.status_enum == SessionStatus.COMPLETED:
            if row.gateway_tx_id == callback.gateway_tx_id:
                logger.info("gateway_callback_ignored_terminal", extra={"outcome": "duplicate"})
                return CallbackOutcome.DUPLICATE_IGNORED
            self._alert_duplicate_charge(
                row, row.gateway_tx_id, callback.gateway_tx_id, now
            )
            return CallbackOutcome.CONFLICT_IGNORED

        # Money moved after we gave up on the session
        self._flag_late_settlement(row, callback, now)
        return CallbackOutcome.LATE_IGNORED

    def _apply_success(
        self,
        row: GatewaySession,
        callback: GatewayCallback,
        now: datetime,
    ) -> CallbackOutcome:
        tx = self._ledger.get_for_update(row.transaction_id)

        self._set_status(
            row,
            SessionStatus.COMPLETED,
            gateway_tx_id=callback.gateway_tx_id,
            raw_callback=dict(callback.raw_payload),
            completed_at=now,
        )

        if tx.status_enum in _CHARGEABLE_STATUSES:
            self._ledger.mark_processing(tx.id)
        if tx.status_enum not in (TransactionStatus.PROCESSING, TransactionStatus.COMPLETED):
            self._flag_late_settlement(row, callback, now)
            return CallbackOutcome.LATE_IGNORED

        try:
            self._ledger.mark_completed(
                tx.id, callback.gateway_tx_id, processed_at=now
            )
        except DuplicateSettlementError as exc:
            self._alert_duplicate_charge(
                row, exc.existing_gateway_tx_id, exc.received_gateway_tx_id, now
            )
            return CallbackOutcome.CONFLICT_IGNORED

        logger.info("gateway_callback_applied", extra={"result": "success"})
        return CallbackOutcome.APPLIED

    def _apply_failure(
        self,
        row: GatewaySession,
        callback: GatewayCallback,
        now: datetime,
    ) -> CallbackOutcome:
        reason = callback.failure_reason or "gateway_declined"
        self._set_status(
            row,
            SessionStatus.FAILED,
            failure_reason=reason,
            raw_callback=dict(callback.raw_payload),
            completed_at=now,
        )
        tx = self._ledger.get_for_update(row.transaction_id)
        if tx.is_open:
            self._ledger.mark_failed(tx.id, reason)
        logger.info("gateway_callback_applied", extra={"result": "failed", "reason": reason})
        return CallbackOutcome.APPLIED

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep_expired(self, now: datetime | None = None) -> SweepResult:
        """
        Expire every INITIATED/PENDING session with ``expires_at < now`` and
        fail its transaction with ``session_expired`` unless the transaction
        already reached a terminal or failed state.  Safe to run repeatedly:
        an expired session is terminal and never selected again.
        """
        now = now or self._clock.now()
        candidates = self.session.execute(
            select(GatewaySession)
            .where(
                GatewaySession.status.in_([s.value for s in ACTIVE_SESSION_STATUSES]),
                GatewaySession.expires_at < now,
            )
            .order_by(GatewaySession.expires_at)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        acc = _SweepAccumulator()
        for row in candidates:
            session_id, transaction_id = row.id, row.transaction_id
            savepoint = self.session.begin_nested()
            try:
                with LogContext.bind(session_id=session_id, transaction_id=transaction_id):
                    failed_tx = self._expire(row, now)
            except GivingKernelError as exc:
                savepoint.rollback()
                logger.warning(
                    "session_expiry_error",
                    extra={
                        "session_id": str(session_id),
                        "error_code": exc.code,
                        "error": str(exc),
                    },
                )
                acc.errors.append((session_id, exc.code))
                continue
            savepoint.commit()
            if failed_tx:
                acc.failed.append(transaction_id)
            acc.expired.append(session_id)

        result = acc.freeze()
        logger.info(
            "expiry_sweep_completed",
            extra={
                "expired_count": result.expired_count,
                "failed_transaction_count": len(result.failed_transaction_ids),
                "error_count": len(result.errors),
            },
        )
        return result

    def _expire(self, row: GatewaySession, now: datetime) -> bool:
        """Expire one session. Returns True when its transaction was failed."""
        self._set_status(
            row,
            SessionStatus.EXPIRED,
            failure_reason=FailureReason.SESSION_EXPIRED,
        )
        logger.info("gateway_session_expired", extra={"expires_at": row.expires_at})
        tx = self._ledger.get_for_update(row.transaction_id)
        if not tx.is_open:
            return False
        self._ledger.mark_failed(tx.id, FailureReason.SESSION_EXPIRED)
        return True

    # ------------------------------------------------------------------

    def _lock(self, session_id: UUID) -> GatewaySession:
        row = self._get_for_update(GatewaySession, session_id)
        if row is None:
            raise SessionNotFoundError(str(session_id))
        return row

    def _set_status(self, row: GatewaySession, target: SessionStatus, **fields) -> None:
        previous = row.status
        if not row.can_transition_to(target):
            # Internal misuse; the callers check terminal state first
            raise SessionNotApplicableError(
                str(row.transaction_id),
                f"session {row.id} cannot move {previous} -> {target.value}",
            )
        row.status = target.value
        for key, value in fields.items():
            setattr(row, key, value)
        row.updated_at = self._clock.now()
        self._flush("GatewaySession", row.id)
        logger.info(
            "gateway_session_status_changed",
            extra={"from_status": previous, "to_status": row.status},
        )

    def _alert_duplicate_charge(
        self,
        row: GatewaySession,
        existing_gateway_tx_id: str | None,
        received_gateway_tx_id: str | None,
        now: datetime,
    ) -> None:
        logger.error(
            "duplicate_settlement_alert",
            extra={
                "existing_gateway_tx_id": existing_gateway_tx_id,
                "received_gateway_tx_id": received_gateway_tx_id,
            },
        )
        tx = self._ledger.get(row.transaction_id)
        self._publisher.publish(
            GivingEvent(
                kind=EventKind.DUPLICATE_CHARGE_ALERT,
                occurred_at=now,
                transaction_id=tx.id,
                session_id=row.id,
                plan_id=tx.plan_id,
                payer_id=tx.payer_id,
                amount=row.amount,
                details={
                    "existing_gateway_tx_id": existing_gateway_tx_id,
                    "received_gateway_tx_id": received_gateway_tx_id,
                },
            )
        )

    def _flag_late_settlement(
        self,
        row: GatewaySession,
        callback: GatewayCallback,
        now: datetime,
    ) -> None:
        logger.warning(
            "late_settlement_requires_review",
            extra={
                "session_status": row.status,
                "gateway_tx_id": callback.gateway_tx_id,
            },
        )
        tx = self._ledger.get(row.transaction_id)
        self._publisher.publish(
            GivingEvent(
                kind=EventKind.LATE_SETTLEMENT_REVIEW,
                occurred_at=now,
                transaction_id=tx.id,
                session_id=row.id,
                plan_id=tx.plan_id,
                payer_id=tx.payer_id,
                amount=row.amount,
                reason=row.failure_reason,
                details={"gateway_tx_id": callback.gateway_tx_id},
            )
        )
