"""ORM models for the giving kernel."""

from giving_kernel.models.gateway_session import SESSION_TRANSITIONS, GatewaySession
from giving_kernel.models.payment_method import PaymentMethodModel
from giving_kernel.models.transaction import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    GivingTransaction,
)

__all__ = [
    "GatewaySession",
    "GivingTransaction",
    "OPEN_STATUSES",
    "PaymentMethodModel",
    "SESSION_TRANSITIONS",
    "TERMINAL_STATUSES",
    "VALID_TRANSITIONS",
]
