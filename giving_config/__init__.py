"""
giving_config -- single public entrypoint for giving configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services never read YAML files or
    environment variables for policy themselves.

Architecture position:
    Configuration.  Sits above ``giving_kernel``; the kernel MUST NEVER
    import from ``giving_config``.  Schema types bridge into kernel value
    objects through ``to_domain()`` / ``to_policy()``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - A configuration that fails validation is never returned.
    - Deterministic checksum: the same content always yields the same
      checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- validation failed.

Every successful ``get_active_config()`` call emits a
``GIVING_CONFIG_TRACE`` log entry with the config id, version, checksum
and method count.
"""

from __future__ import annotations

import logging
from pathlib import Path

from giving_config.loader import compute_checksum, load_configuration
from giving_config.schema import (
    FeeScheduleDef,
    GatewayPolicyDef,
    GivingConfiguration,
    PaymentMethodDef,
    RecurringPolicyDef,
    RetryPolicyDef,
    WorkerPolicyDef,
)
from giving_config.validator import ConfigValidationResult, validate_configuration

_logger = logging.getLogger("giving_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "giving.yaml"


def get_active_config(config_path: Path | str | None = None) -> GivingConfiguration:
    """
    The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a giving YAML file.  Defaults to the
            packaged ``defaults/giving.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = load_configuration(path)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("giving_config_warning", extra={"warning": warning})

    _logger.info(
        "GIVING_CONFIG_TRACE",
        extra={
            "trace_type": "GIVING_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "currency": config.currency,
            "payment_method_count": len(config.payment_methods),
            "source_path": str(path),
        },
    )
    return config


__all__ = [
    "ConfigValidationResult",
    "DEFAULT_CONFIG_PATH",
    "FeeScheduleDef",
    "GatewayPolicyDef",
    "GivingConfiguration",
    "PaymentMethodDef",
    "RecurringPolicyDef",
    "RetryPolicyDef",
    "WorkerPolicyDef",
    "compute_checksum",
    "get_active_config",
    "validate_configuration",
]
