"""
Configuration Validator (``giving_config.validator``).

Responsibility
--------------
Checks a parsed ``GivingConfiguration`` for structural and business-rule
integrity before any service is wired with it.

Invariants enforced
-------------------
* Payment method codes are unique; min <= max; fees are non-negative
  integers and percentage fees stay below 10000 bps.
* Currencies are ISO 4217.
* Retry backoff is strictly increasing and a reason is never both
  transient and permanent.
* Session window, failure threshold and tick interval are positive.

Failure modes
-------------
* Errors (``ConfigValidationResult.errors``) -> the configuration MUST NOT
  be used.
* Warnings -> usable, but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from giving_kernel.db.types import is_valid_currency
from giving_kernel.domain.payment_methods import BASIS_POINTS_DENOMINATOR, FeeType

from giving_config.schema import GivingConfiguration


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: GivingConfiguration) -> ConfigValidationResult:
    result = ConfigValidationResult()

    _validate_currency(config, result)
    _validate_networks(config, result)
    _validate_payment_methods(config, result)
    _validate_retry_policy(config, result)
    _validate_timing(config, result)

    return result


def _validate_currency(config: GivingConfiguration, result: ConfigValidationResult) -> None:
    if not is_valid_currency(config.currency):
        result.add_error(f"Default currency '{config.currency}' is not ISO 4217")


def _validate_networks(config: GivingConfiguration, result: ConfigValidationResult) -> None:
    gateway_methods = [m for m in config.payment_methods if m.requires_gateway_session]
    if gateway_methods and not config.supported_networks:
        result.add_error(
            "Gateway payment methods are configured but no supported_networks are listed"
        )
    lowered = [n.lower() for n in config.supported_networks]
    if len(set(lowered)) != len(lowered):
        result.add_error("supported_networks contains duplicates (case-insensitive)")


def _validate_payment_methods(
    config: GivingConfiguration, result: ConfigValidationResult
) -> None:
    if not config.payment_methods:
        result.add_warning("No payment methods configured")

    seen: set[str] = set()
    for method in config.payment_methods:
        label = f"Payment method '{method.code}'"
        if method.code in seen:
            result.add_error(f"Duplicate payment method code: {method.code}")
        seen.add(method.code)

        if method.currency is not None and not is_valid_currency(method.currency):
            result.add_error(f"{label}: currency '{method.currency}' is not ISO 4217")

        if not isinstance(method.min_amount, int) or method.min_amount < 1:
            result.add_error(f"{label}: min_amount must be a positive integer")
        if method.max_amount is not None:
            if not isinstance(method.max_amount, int):
                result.add_error(f"{label}: max_amount must be an integer")
            elif isinstance(method.min_amount, int) and method.max_amount < method.min_amount:
                result.add_error(
                    f"{label}: min_amount {method.min_amount} exceeds "
                    f"max_amount {method.max_amount}"
                )

        try:
            fee_type = FeeType(method.fee.fee_type)
        except ValueError:
            result.add_error(f"{label}: unknown fee type '{method.fee.fee_type}'")
            continue
        value = method.fee.value
        if isinstance(value, bool) or not isinstance(value, int):
            result.add_error(f"{label}: fee value must be an integer in minor units or bps")
        elif value < 0:
            result.add_error(f"{label}: fee value cannot be negative")
        elif fee_type == FeeType.PERCENTAGE and value >= BASIS_POINTS_DENOMINATOR:
            result.add_error(
                f"{label}: percentage fee must be below {BASIS_POINTS_DENOMINATOR} bps"
            )
        elif fee_type == FeeType.FIXED and value >= method.min_amount and value > 0:
            result.add_warning(
                f"{label}: fixed fee {value} leaves no net amount at the minimum gift"
            )


def _validate_retry_policy(config: GivingConfiguration, result: ConfigValidationResult) -> None:
    backoff = config.retry.backoff_minutes
    if any(not isinstance(m, int) or m < 1 for m in backoff):
        result.add_error("retry.backoff_minutes must be positive integers")
    elif any(later <= earlier for earlier, later in zip(backoff, backoff[1:])):
        result.add_error("retry.backoff_minutes must be strictly increasing")

    overlap = set(config.retry.transient_reasons) & set(config.retry.permanent_reasons)
    if overlap:
        result.add_error(
            "Failure reasons listed as both transient and permanent: "
            + ", ".join(sorted(overlap))
        )


def _validate_timing(config: GivingConfiguration, result: ConfigValidationResult) -> None:
    if config.gateway.session_window_minutes <= 0:
        result.add_error("gateway.session_window_minutes must be positive")
    if config.gateway.timeout_seconds <= 0:
        result.add_error("gateway.timeout_seconds must be positive")
    if config.recurring.max_consecutive_failures < 1:
        result.add_error("recurring.max_consecutive_failures must be at least 1")
    if config.worker.tick_interval_seconds <= 0:
        result.add_error("worker.tick_interval_seconds must be positive")
