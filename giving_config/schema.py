"""
GivingConfiguration schema.

Defines the human-authored, reviewable configuration for the giving
engine.  YAML is parsed into these frozen types by the loader and checked
by the validator before anything at runtime sees it.

The kernel never imports this module; ``to_domain()`` / ``to_policy()``
bridge config definitions into kernel value objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from giving_kernel.domain.payment_methods import FeeSchedule, FeeType, PaymentMethod
from giving_kernel.domain.retry_policy import (
    DEFAULT_TRANSIENT_REASONS,
    FailureReason,
    RetryPolicy,
)

# ---------------------------------------------------------------------------
# Payment methods
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeeScheduleDef:
    fee_type: str = "fixed"  # fixed (minor units) or percentage (basis points)
    value: int = 0


@dataclass(frozen=True)
class PaymentMethodDef:
    """One payment rail and the capabilities that drive its handling."""

    code: str
    name: str
    requires_gateway_session: bool = False
    requires_account_number: bool = False
    fee: FeeScheduleDef = field(default_factory=FeeScheduleDef)
    min_amount: int = 1
    max_amount: int | None = None
    currency: str | None = None  # None: configuration default
    is_active: bool = True
    description: str | None = None

    def to_domain(self, default_currency: str) -> PaymentMethod:
        return PaymentMethod(
            code=self.code,
            name=self.name,
            requires_gateway_session=self.requires_gateway_session,
            requires_account_number=self.requires_account_number,
            fee_schedule=FeeSchedule(FeeType(self.fee.fee_type), self.fee.value),
            min_amount=self.min_amount,
            max_amount=self.max_amount,
            currency=self.currency or default_currency,
            is_active=self.is_active,
            description=self.description,
        )


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GatewayPolicyDef:
    session_window_minutes: int = 15
    base_url: str | None = None
    timeout_seconds: float = 10.0
    api_key_env: str | None = None  # Name of the environment variable, never the key

    @property
    def session_window(self) -> timedelta:
        return timedelta(minutes=self.session_window_minutes)


@dataclass(frozen=True)
class RetryPolicyDef:
    backoff_minutes: tuple[int, ...] = (1, 5, 30)
    transient_reasons: tuple[str, ...] = tuple(sorted(DEFAULT_TRANSIENT_REASONS))
    permanent_reasons: tuple[str, ...] = (
        FailureReason.INSUFFICIENT_FUNDS,
        FailureReason.USER_DECLINED,
        FailureReason.INVALID_PHONE_NUMBER,
        FailureReason.INVALID_AMOUNT,
    )

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy.from_minutes(self.backoff_minutes, frozenset(self.transient_reasons))


@dataclass(frozen=True)
class RecurringPolicyDef:
    max_consecutive_failures: int = 3


@dataclass(frozen=True)
class WorkerPolicyDef:
    tick_interval_seconds: int = 60


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GivingConfiguration:
    """Root configuration artifact."""

    config_id: str
    version: int
    currency: str
    supported_networks: tuple[str, ...]
    payment_methods: tuple[PaymentMethodDef, ...]
    gateway: GatewayPolicyDef = field(default_factory=GatewayPolicyDef)
    retry: RetryPolicyDef = field(default_factory=RetryPolicyDef)
    recurring: RecurringPolicyDef = field(default_factory=RecurringPolicyDef)
    worker: WorkerPolicyDef = field(default_factory=WorkerPolicyDef)
    checksum: str = ""

    @property
    def network_set(self) -> frozenset[str]:
        return frozenset(self.supported_networks)

    def method(self, code: str) -> PaymentMethodDef:
        for method in self.payment_methods:
            if method.code == code:
                return method
        raise KeyError(code)

    def domain_payment_methods(self) -> list[PaymentMethod]:
        return [m.to_domain(self.currency) for m in self.payment_methods]

    def retry_policy(self) -> RetryPolicy:
        return self.retry.to_policy()
