"""
Configuration Loader (``giving_config.loader``).

Responsibility
--------------
Loads the giving YAML file and parses it into the frozen
``giving_config.schema`` dataclasses.  Runtime callers go through
``giving_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Required keys (``config_id``, ``currency``, method ``code``/``name``)
  raise ``KeyError`` when missing; there are no silent defaults for them.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  content, independent of key order and formatting in the file.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shapes (e.g. a scalar where a list belongs) -> ``ValueError``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from giving_config.schema import (
    FeeScheduleDef,
    GatewayPolicyDef,
    GivingConfiguration,
    PaymentMethodDef,
    RecurringPolicyDef,
    RetryPolicyDef,
    WorkerPolicyDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _as_tuple(value: Any, key: str) -> tuple:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"'{key}' must be a list, got {type(value).__name__}")
    return tuple(value)


def parse_payment_method(data: dict[str, Any]) -> PaymentMethodDef:
    """Parse a PaymentMethodDef from a dict."""
    fee_data = data.get("fee") or {}
    return PaymentMethodDef(
        code=data["code"],
        name=data["name"],
        requires_gateway_session=bool(data.get("requires_gateway_session", False)),
        requires_account_number=bool(data.get("requires_account_number", False)),
        fee=FeeScheduleDef(
            fee_type=fee_data.get("type", "fixed"),
            value=fee_data.get("value", 0),
        ),
        min_amount=data.get("min_amount", 1),
        max_amount=data.get("max_amount"),
        currency=data.get("currency"),
        is_active=bool(data.get("is_active", True)),
        description=data.get("description"),
    )


def parse_gateway_policy(data: dict[str, Any]) -> GatewayPolicyDef:
    return GatewayPolicyDef(
        session_window_minutes=data.get("session_window_minutes", 15),
        base_url=data.get("base_url"),
        timeout_seconds=float(data.get("timeout_seconds", 10.0)),
        api_key_env=data.get("api_key_env"),
    )


def parse_retry_policy(data: dict[str, Any]) -> RetryPolicyDef:
    defaults = RetryPolicyDef()
    return RetryPolicyDef(
        backoff_minutes=_as_tuple(
            data.get("backoff_minutes", defaults.backoff_minutes), "retry.backoff_minutes"
        ),
        transient_reasons=_as_tuple(
            data.get("transient_reasons", defaults.transient_reasons),
            "retry.transient_reasons",
        ),
        permanent_reasons=_as_tuple(
            data.get("permanent_reasons", defaults.permanent_reasons),
            "retry.permanent_reasons",
        ),
    )


def parse_configuration(data: dict[str, Any]) -> GivingConfiguration:
    """
    Parse a ``GivingConfiguration`` from the top-level YAML mapping.

    Raises:
        KeyError: if required keys are missing.
        ValueError: if a section has the wrong shape.
    """
    config = GivingConfiguration(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        currency=data["currency"],
        supported_networks=_as_tuple(data.get("supported_networks"), "supported_networks"),
        payment_methods=tuple(
            parse_payment_method(m)
            for m in _as_tuple(data.get("payment_methods"), "payment_methods")
        ),
        gateway=parse_gateway_policy(data.get("gateway") or {}),
        retry=parse_retry_policy(data.get("retry") or {}),
        recurring=RecurringPolicyDef(
            max_consecutive_failures=(data.get("recurring") or {}).get(
                "max_consecutive_failures", 3
            ),
        ),
        worker=WorkerPolicyDef(
            tick_interval_seconds=(data.get("worker") or {}).get("tick_interval_seconds", 60),
        ),
    )
    return dataclasses.replace(config, checksum=compute_checksum(config))


def load_configuration(path: Path) -> GivingConfiguration:
    return parse_configuration(load_yaml_file(path))


def compute_checksum(config: GivingConfiguration) -> str:
    """SHA-256 over the canonical JSON form of the configuration (checksum excluded)."""
    payload = dataclasses.asdict(config)
    payload.pop("checksum", None)
    canonical = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
