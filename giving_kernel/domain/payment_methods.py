"""
Payment method capabilities and fee schedules.

Responsibility:
    Immutable value objects describing how a payment rail behaves.  Business
    logic branches on capability flags (``requires_gateway_session``,
    ``requires_account_number``), never on method codes, so a new rail is a
    configuration change rather than a code change.

Architecture position:
    Kernel > Domain -- pure, no I/O.  Built from ORM rows by
    PaymentMethodRegistry and from YAML definitions by giving_config.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

BASIS_POINTS_DENOMINATOR = 10_000


class FeeType(str, Enum):
    """How a method's processing fee is expressed."""

    FIXED = "fixed"  # value is minor units
    PERCENTAGE = "percentage"  # value is basis points (1/100 of a percent)


@dataclass(frozen=True)
class FeeSchedule:
    """Processing fee configuration for one payment method."""

    fee_type: FeeType = FeeType.FIXED
    value: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise ValueError(f"Fee value must be an integer, got {self.value!r}")
        if self.value < 0:
            raise ValueError(f"Fee value cannot be negative: {self.value}")
        if (
            self.fee_type == FeeType.PERCENTAGE
            and self.value >= BASIS_POINTS_DENOMINATOR
        ):
            raise ValueError(
                f"Percentage fee must be below {BASIS_POINTS_DENOMINATOR} bps, "
                f"got {self.value}"
            )

    @classmethod
    def free(cls) -> "FeeSchedule":
        return cls(FeeType.FIXED, 0)


@dataclass(frozen=True)
class PaymentMethod:
    """
    A configured payment rail (mobile money, bank transfer, cash...).

    ``min_amount``/``max_amount`` are gross limits in minor units;
    ``max_amount`` of None means unbounded.
    """

    code: str
    name: str
    requires_gateway_session: bool
    requires_account_number: bool = False
    fee_schedule: FeeSchedule = FeeSchedule()
    min_amount: int = 1
    max_amount: int | None = None
    currency: str = "GHS"
    is_active: bool = True
    id: UUID | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        if self.min_amount < 0:
            raise ValueError(f"min_amount cannot be negative: {self.min_amount}")
        if self.max_amount is not None and self.max_amount < self.min_amount:
            raise ValueError(
                f"max_amount {self.max_amount} is below min_amount {self.min_amount}"
            )

    @property
    def minimum_gross(self) -> int:
        """Smallest gross amount accepted (never below one minor unit)."""
        return max(1, self.min_amount)
