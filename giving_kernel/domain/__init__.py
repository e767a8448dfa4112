"""
Pure domain layer.

Value objects and policies with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (except SystemClock)

All domain objects are immutable and deterministic.
"""

from giving_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from giving_kernel.domain.dtos import (
    CallbackOutcome,
    CallbackResult,
    ChargeAck,
    ChargeRequest,
    GatewayCallback,
    GatewaySessionView,
    GivingRequest,
    GivingSummary,
    PaymentStatus,
    SessionStatus,
    TransactionStatus,
    TransactionType,
    TransactionView,
)
from giving_kernel.domain.fee_policy import FeeBreakdown, apply_fee_policy, compute_fee
from giving_kernel.domain.notifications import (
    EventKind,
    EventPublisher,
    GivingEvent,
    LoggingNotificationSink,
    RecordingSink,
)
from giving_kernel.domain.payment_methods import FeeSchedule, FeeType, PaymentMethod
from giving_kernel.domain.retry_policy import (
    FailureClass,
    FailureReason,
    RetryDecision,
    RetryPolicy,
)

__all__ = [
    "CallbackOutcome",
    "CallbackResult",
    "ChargeAck",
    "ChargeRequest",
    "Clock",
    "DeterministicClock",
    "EventKind",
    "EventPublisher",
    "FailureClass",
    "FailureReason",
    "FeeBreakdown",
    "FeeSchedule",
    "FeeType",
    "GatewayCallback",
    "GatewaySessionView",
    "GivingEvent",
    "GivingRequest",
    "GivingSummary",
    "LoggingNotificationSink",
    "PaymentMethod",
    "PaymentStatus",
    "RecordingSink",
    "RetryDecision",
    "RetryPolicy",
    "SessionStatus",
    "SystemClock",
    "TransactionStatus",
    "TransactionType",
    "TransactionView",
    "apply_fee_policy",
    "compute_fee",
]
