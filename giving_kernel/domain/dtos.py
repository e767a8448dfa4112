"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Status vocabularies for transactions and gateway sessions, the
    human-facing giving request, the gateway boundary messages
    (ChargeRequest/ChargeAck outbound, GatewayCallback inbound), and the
    read-only projections handed to collaborators (TransactionView,
    GatewaySessionView, GivingSummary).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from
    services and selectors.

Data flow:
    GivingRequest -> GivingTransaction -> ChargeRequest -> gateway
    gateway -> GatewayCallback -> CallbackOutcome
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping
from uuid import UUID

if TYPE_CHECKING:
    from giving_kernel.models.gateway_session import GatewaySession
    from giving_kernel.models.transaction import GivingTransaction


class TransactionStatus(str, Enum):
    """Ledger status of one monetary movement."""

    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"  # refund marker transactions only


class PaymentStatus(str, Enum):
    """Gateway-facing granularity of a transaction's payment."""

    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransactionType(str, Enum):
    PAYMENT = "payment"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class SessionStatus(str, Enum):
    """Gateway handshake status."""

    INITIATED = "initiated"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_SESSION_STATUSES: frozenset[SessionStatus] = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.FAILED,
    SessionStatus.EXPIRED,
})

ACTIVE_SESSION_STATUSES: frozenset[SessionStatus] = frozenset({
    SessionStatus.INITIATED,
    SessionStatus.PENDING,
})


class CallbackResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class CallbackOutcome(str, Enum):
    """What the session manager did with an inbound callback."""

    APPLIED = "applied"
    DUPLICATE_IGNORED = "duplicate_ignored"
    CONFLICT_IGNORED = "conflict_ignored"
    LATE_IGNORED = "late_ignored"


@dataclass(frozen=True)
class GivingRequest:
    """Human-facing request to give. ``amount`` is gross, in minor units."""

    amount: int
    category_id: UUID
    payment_method_id: UUID
    phone_number: str | None = None
    network: str | None = None
    account_number: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ChargeRequest:
    """Outbound 'initiate charge' instruction for the gateway."""

    session_id: UUID
    transaction_id: UUID
    reference: str
    phone_number: str | None
    network: str | None
    amount: int
    currency: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "session_id": str(self.session_id),
            "reference": self.reference,
            "phone_number": self.phone_number,
            "network": self.network,
            "amount": self.amount,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class ChargeAck:
    """Gateway acknowledgement that a charge prompt was accepted."""

    session_id: UUID
    gateway_reference: str | None = None
    raw_response: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "raw_response", MappingProxyType(dict(self.raw_response))
        )


@dataclass(frozen=True)
class GatewayCallback:
    """Inbound result for a session, as reported by the gateway."""

    session_id: UUID
    result: CallbackResult
    gateway_tx_id: str | None = None
    failure_reason: str | None = None
    raw_payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.result == CallbackResult.SUCCESS and not self.gateway_tx_id:
            raise ValueError("A success callback must carry a gateway_tx_id")
        object.__setattr__(
            self, "raw_payload", MappingProxyType(dict(self.raw_payload))
        )

    @classmethod
    def success(
        cls,
        session_id: UUID,
        gateway_tx_id: str,
        raw_payload: Mapping[str, Any] | None = None,
    ) -> GatewayCallback:
        return cls(
            session_id=session_id,
            result=CallbackResult.SUCCESS,
            gateway_tx_id=gateway_tx_id,
            raw_payload=raw_payload or {},
        )

    @classmethod
    def failure(
        cls,
        session_id: UUID,
        reason: str,
        gateway_tx_id: str | None = None,
        raw_payload: Mapping[str, Any] | None = None,
    ) -> GatewayCallback:
        return cls(
            session_id=session_id,
            result=CallbackResult.FAILED,
            gateway_tx_id=gateway_tx_id,
            failure_reason=reason,
            raw_payload=raw_payload or {},
        )


@dataclass(frozen=True)
class TransactionView:
    """Read-only projection of a transaction for history, receipts, stats."""

    id: UUID
    reference: str
    payer_id: UUID
    payment_method_id: UUID
    category_id: UUID
    gross_amount: int
    fee_amount: int
    net_amount: int
    currency: str
    status: TransactionStatus
    payment_status: PaymentStatus
    transaction_type: TransactionType
    description: str | None
    phone_number: str | None
    network: str | None
    gateway_tx_id: str | None
    failure_reason: str | None
    retry_count: int
    next_retry_at: datetime | None
    original_transaction_id: UUID | None
    plan_id: UUID | None
    created_at: datetime
    processed_at: datetime | None
    failed_at: datetime | None

    @classmethod
    def from_model(cls, tx: GivingTransaction) -> TransactionView:
        return cls(
            id=tx.id,
            reference=tx.reference,
            payer_id=tx.payer_id,
            payment_method_id=tx.payment_method_id,
            category_id=tx.category_id,
            gross_amount=tx.gross_amount,
            fee_amount=tx.fee_amount,
            net_amount=tx.net_amount,
            currency=tx.currency,
            status=TransactionStatus(tx.status),
            payment_status=PaymentStatus(tx.payment_status),
            transaction_type=TransactionType(tx.transaction_type),
            description=tx.description,
            phone_number=tx.phone_number,
            network=tx.network,
            gateway_tx_id=tx.gateway_tx_id,
            failure_reason=tx.failure_reason,
            retry_count=tx.retry_count,
            next_retry_at=tx.next_retry_at,
            original_transaction_id=tx.original_transaction_id,
            plan_id=tx.plan_id,
            created_at=tx.created_at,
            processed_at=tx.processed_at,
            failed_at=tx.failed_at,
        )


@dataclass(frozen=True)
class GatewaySessionView:
    id: UUID
    transaction_id: UUID
    phone_number: str | None
    network: str | None
    amount: int
    status: SessionStatus
    retry_count: int
    expires_at: datetime
    completed_at: datetime | None
    gateway_tx_id: str | None
    failure_reason: str | None

    @classmethod
    def from_model(cls, session: GatewaySession) -> GatewaySessionView:
        return cls(
            id=session.id,
            transaction_id=session.transaction_id,
            phone_number=session.phone_number,
            network=session.network,
            amount=session.amount,
            status=SessionStatus(session.status),
            retry_count=session.retry_count,
            expires_at=session.expires_at,
            completed_at=session.completed_at,
            gateway_tx_id=session.gateway_tx_id,
            failure_reason=session.failure_reason,
        )


@dataclass(frozen=True)
class GivingSummary:
    """Totals over payment transactions (minor units)."""

    completed_gross: int
    completed_net: int
    completed_fees: int
    refunded_total: int
    completed_count: int
    pending_count: int
    failed_count: int
