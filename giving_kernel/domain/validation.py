"""
Capability-driven validation of giving requests.

What a request must carry depends on the payment method's capabilities:
gateway methods need a reachable phone number on a supported network;
account-number methods need an account number.  Amount limits are the
fee policy's concern.
"""

import re

from giving_kernel.domain.dtos import GivingRequest
from giving_kernel.domain.payment_methods import PaymentMethod
from giving_kernel.exceptions import InvalidGivingRequestError

DEFAULT_NETWORKS: frozenset[str] = frozenset({"MTN", "Vodafone", "AirtelTigo"})

_PHONE_SEPARATORS = re.compile(r"[\s\-()]")
_PHONE_DIGITS = re.compile(r"^\+?\d{9,15}$")


def normalize_phone_number(raw: str) -> str:
    """Strip separators; keep a leading '+'. Raises on a malformed number."""
    cleaned = _PHONE_SEPARATORS.sub("", raw or "")
    if not _PHONE_DIGITS.match(cleaned):
        raise InvalidGivingRequestError(
            "phone_number", f"'{raw}' is not a 9-15 digit phone number"
        )
    return cleaned


def normalize_network(raw: str, supported: frozenset[str] = DEFAULT_NETWORKS) -> str:
    """Match a network name case-insensitively against the supported set."""
    lookup = {name.lower(): name for name in supported}
    key = (raw or "").strip().lower()
    if key not in lookup:
        raise InvalidGivingRequestError(
            "network",
            f"'{raw}' is not a supported network ({', '.join(sorted(supported))})",
        )
    return lookup[key]


def validate_giving_request(
    request: GivingRequest,
    method: PaymentMethod,
    supported_networks: frozenset[str] = DEFAULT_NETWORKS,
) -> GivingRequest:
    """
    Check request fields against the method's capabilities.

    Returns a copy with the phone number and network normalized.

    Raises:
        InvalidGivingRequestError: a required field is missing or malformed.
    """
    phone_number = request.phone_number
    network = request.network

    if method.requires_gateway_session:
        if not phone_number:
            raise InvalidGivingRequestError(
                "phone_number", f"required for {method.name}"
            )
        if not network:
            raise InvalidGivingRequestError("network", f"required for {method.name}")
        phone_number = normalize_phone_number(phone_number)
        network = normalize_network(network, supported_networks)

    if method.requires_account_number and not (request.account_number or "").strip():
        raise InvalidGivingRequestError(
            "account_number", f"required for {method.name}"
        )

    return GivingRequest(
        amount=request.amount,
        category_id=request.category_id,
        payment_method_id=request.payment_method_id,
        phone_number=phone_number,
        network=network,
        account_number=request.account_number,
        description=request.description,
    )
