"""Deterministic gateway double: replays a scripted queue of outcomes."""

from collections import deque

from giving_kernel.domain.dtos import ChargeAck, ChargeRequest
from giving_kernel.exceptions import (
    GatewayError,
    GatewayPermanentError,
    GatewayTransientError,
)
from giving_kernel.gateway.base import PaymentGateway


class ScriptedGateway(PaymentGateway):
    """
    Records every ChargeRequest and answers from a script.

    Unscripted calls are acknowledged.  Scripted errors are raised once each,
    in order.
    """

    def __init__(self) -> None:
        self.requests: list[ChargeRequest] = []
        self._script: deque[GatewayError | str | None] = deque()

    def script_ack(self, gateway_reference: str | None = None) -> "ScriptedGateway":
        self._script.append(gateway_reference)
        return self

    def script_transient(self, reason: str = "timeout") -> "ScriptedGateway":
        self._script.append(GatewayTransientError(reason))
        return self

    def script_permanent(self, reason: str = "invalid_phone_number") -> "ScriptedGateway":
        self._script.append(GatewayPermanentError(reason))
        return self

    def initiate_charge(self, request: ChargeRequest) -> ChargeAck:
        self.requests.append(request)
        outcome = self._script.popleft() if self._script else None
        if isinstance(outcome, GatewayError):
            raise outcome
        return ChargeAck(
            session_id=request.session_id,
            gateway_reference=outcome or f"GW-{request.session_id.hex[:12]}",
            raw_response={"status": "accepted"},
        )

    @property
    def call_count(self) -> int:
        return len(self.requests)
