"""
Fee Policy -- processing fee and net amount for a gross gift.

Pure integer arithmetic.  ``net + fee == gross`` holds for every accepted
input; percentage fees round half up on the basis-point product, so no
float ever touches a money value.
"""

from dataclasses import dataclass

from giving_kernel.domain.payment_methods import (
    BASIS_POINTS_DENOMINATOR,
    FeeSchedule,
    FeeType,
    PaymentMethod,
)
from giving_kernel.exceptions import InvalidAmountError


@dataclass(frozen=True)
class FeeBreakdown:
    gross: int
    fee: int
    net: int


def compute_fee(schedule: FeeSchedule, gross: int) -> int:
    """Fee in minor units for ``gross`` under ``schedule``."""
    if schedule.fee_type == FeeType.FIXED:
        return schedule.value
    # round half up: (a * b + d/2) // d
    return (
        gross * schedule.value + BASIS_POINTS_DENOMINATOR // 2
    ) // BASIS_POINTS_DENOMINATOR


def apply_fee_policy(method: PaymentMethod, gross: int) -> FeeBreakdown:
    """
    Validate ``gross`` against the method's limits and split it into fee/net.

    Raises:
        InvalidAmountError: gross is not an integer, is below the method
            minimum (never below 1), above the method maximum, or the fee
            would leave less than one minor unit of net.
    """
    if isinstance(gross, bool) or not isinstance(gross, int):
        raise InvalidAmountError(
            gross, reason="amount must be an integer number of minor units"
        )

    minimum = method.minimum_gross
    if gross < minimum or (method.max_amount is not None and gross > method.max_amount):
        raise InvalidAmountError(gross, minimum=minimum, maximum=method.max_amount)

    fee = compute_fee(method.fee_schedule, gross)
    net = gross - fee
    if net < 1:
        raise InvalidAmountError(
            gross,
            minimum=minimum,
            maximum=method.max_amount,
            reason=f"processing fee {fee} leaves no net amount",
        )

    return FeeBreakdown(gross=gross, fee=fee, net=net)
