"""
PaymentGateway -- the port to the external mobile-money rail.

Business logic talks to this interface only.  The HTTP adapter talks to a
real gateway; ScriptedGateway is the deterministic double used in tests and
local runs.  There is no "mock mode" flag anywhere in the services.
"""

from abc import ABC, abstractmethod

from giving_kernel.domain.dtos import ChargeAck, ChargeRequest


class PaymentGateway(ABC):
    """
    Outbound half of the gateway contract.

    ``initiate_charge`` asks the rail to prompt the payer.  It returns as soon
    as the gateway accepts the request; the result arrives later as a
    callback.

    Raises:
        GatewayTransientError: timeout, network error, gateway busy.  The
            charge may or may not have reached the payer.
        GatewayPermanentError: the gateway refused the charge outright.
    """

    @abstractmethod
    def initiate_charge(self, request: ChargeRequest) -> ChargeAck:
        ...
