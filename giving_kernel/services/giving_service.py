"""
GivingService -- the entry point for a human-facing giving request.

Responsibility:
    Turns ``GivingRequest{amount, category_id, payment_method_id,
    phone_number?, network?, account_number?, description?}`` into a
    pending transaction and, for gateway rails, an open gateway session.
    Returns read-only views; callers never see ORM rows.

Architecture position:
    Kernel > Services -- facade over the ledger and the gateway session
    manager.  Branches on payment-method capability flags only.

Failure modes:
    - InvalidGivingRequestError: capability-required field missing or
      malformed (phone number, network, account number).
    - InvalidAmountError: amount outside the method's limits.
    - PaymentMethodNotFoundError / PaymentMethodInactiveError.
    - IdempotencyConflictError: idempotency key reused with other values.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from giving_kernel.domain.dtos import (
    CallbackOutcome,
    GatewayCallback,
    GatewaySessionView,
    GivingRequest,
    GivingSummary,
    TransactionStatus,
    TransactionView,
)
from giving_kernel.domain.validation import DEFAULT_NETWORKS, validate_giving_request
from giving_kernel.logging_config import LogContext, get_logger
from giving_kernel.selectors.transaction_selector import TransactionSelector
from giving_kernel.services.gateway_session_manager import GatewaySessionManager
from giving_kernel.services.ledger_service import TransactionLedger
from giving_kernel.services.payment_method_registry import PaymentMethodRegistry

logger = get_logger("services.giving")


@dataclass(frozen=True)
class GivingResult:
    transaction: TransactionView
    session: GatewaySessionView | None = None

    @property
    def awaiting_payer(self) -> bool:
        """True while the payer still has to approve the prompt on their phone."""
        return self.session is not None and self.transaction.status not in (
            TransactionStatus.COMPLETED,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
        )


class GivingService:
    def __init__(
        self,
        session: Session,
        ledger: TransactionLedger,
        session_manager: GatewaySessionManager,
        registry: PaymentMethodRegistry,
        *,
        supported_networks: frozenset[str] = DEFAULT_NETWORKS,
    ):
        self._session = session
        self._ledger = ledger
        self._sessions = session_manager
        self._registry = registry
        self._networks = supported_networks
        self._selector = TransactionSelector(session)

    def give(
        self,
        payer_id: UUID,
        request: GivingRequest,
        actor_id: UUID | None = None,
        idempotency_key: str | None = None,
    ) -> GivingResult:
        """
        Record a gift and start collecting it.

        Gateway rails get a session and a prompt on the payer's phone; the
        call returns without waiting for the payer.  Other rails stay
        pending until staff record the settlement.  Replaying the same
        idempotency key returns the existing transaction and its live
        session instead of charging twice.
        """
        method = self._registry.get_active(request.payment_method_id)
        request = validate_giving_request(request, method, self._networks)

        with LogContext.bind(payer_id=payer_id, actor_id=actor_id):
            tx = self._ledger.create(
                payer_id,
                request.payment_method_id,
                request.category_id,
                request.amount,
                request.description,
                reference=idempotency_key,
                phone_number=request.phone_number,
                network=request.network,
                account_number=request.account_number,
                actor_id=actor_id,
            )

            session_row = None
            if method.requires_gateway_session:
                session_row = self._sessions.active_session_for(tx.id)
                if session_row is None and tx.status_enum == TransactionStatus.PENDING:
                    session_row = self._sessions.open_session(tx.id, actor_id=actor_id)

            logger.info(
                "giving_request_accepted",
                extra={
                    "transaction_id": str(tx.id),
                    "method_code": method.code,
                    "amount": tx.gross_amount,
                    "status": tx.status,
                    "session_opened": session_row is not None,
                },
            )

        return GivingResult(
            transaction=TransactionView.from_model(tx),
            session=GatewaySessionView.from_model(session_row) if session_row else None,
        )

    def handle_callback(self, callback: GatewayCallback) -> CallbackOutcome:
        return self._sessions.on_gateway_callback(callback)

    def confirm_manual_payment(
        self,
        transaction_id: UUID,
        processed_by: UUID,
        external_reference: str | None = None,
    ) -> TransactionView:
        tx = self._ledger.record_manual_settlement(
            transaction_id, processed_by, external_reference
        )
        return TransactionView.from_model(tx)

    def cancel(
        self,
        transaction_id: UUID,
        reason: str | None = None,
        actor_id: UUID | None = None,
    ) -> TransactionView:
        return TransactionView.from_model(self._ledger.cancel(transaction_id, reason, actor_id))

    def refund(
        self,
        transaction_id: UUID,
        amount: int,
        reason: str | None = None,
        actor_id: UUID | None = None,
    ) -> TransactionView:
        return TransactionView.from_model(
            self._ledger.refund(transaction_id, amount, reason, actor_id)
        )

    def history(self, payer_id: UUID, limit: int | None = None) -> list[TransactionView]:
        return self._selector.list_for_payer(payer_id, limit=limit)

    def summary(self, payer_id: UUID | None = None) -> GivingSummary:
        return self._selector.summarize(payer_id)
