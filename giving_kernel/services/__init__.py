"""Services for the giving kernel (write side)."""

from giving_kernel.services.gateway_session_manager import GatewaySessionManager, SweepResult
from giving_kernel.services.giving_service import GivingResult, GivingService
from giving_kernel.services.ledger_service import TransactionLedger
from giving_kernel.services.payment_method_registry import (
    SYSTEM_ACTOR_ID,
    PaymentMethodRegistry,
)
from giving_kernel.services.retry_coordinator import RetryCoordinator, RetryRunResult

__all__ = [
    "GatewaySessionManager",
    "GivingResult",
    "GivingService",
    "PaymentMethodRegistry",
    "RetryCoordinator",
    "RetryRunResult",
    "SYSTEM_ACTOR_ID",
    "SweepResult",
    "TransactionLedger",
]
