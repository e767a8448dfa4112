"""Payment gateway port and adapters."""

from giving_kernel.gateway.base import PaymentGateway
from giving_kernel.gateway.http_gateway import HttpMobileMoneyGateway
from giving_kernel.gateway.scripted import ScriptedGateway

__all__ = ["HttpMobileMoneyGateway", "PaymentGateway", "ScriptedGateway"]
