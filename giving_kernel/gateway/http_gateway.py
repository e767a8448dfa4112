"""
HTTP adapter for a mobile-money gateway (httpx).

Outbound:  POST {base_url}/charges with the ChargeRequest payload.
Inbound:   parse_callback() turns a webhook body into a GatewayCallback.

Failure classification happens here, at the boundary:
    timeout                  -> GatewayTransientError("timeout")
    connect/read/other I/O   -> GatewayTransientError("network_error")
    HTTP 429                 -> GatewayTransientError("gateway_busy")
    HTTP 5xx                 -> GatewayTransientError("gateway_unavailable")
    other HTTP 4xx           -> GatewayPermanentError(<gateway reason code>)
"""

from typing import Any, Mapping
from uuid import UUID

import httpx

from giving_kernel.domain.dtos import CallbackResult, ChargeAck, ChargeRequest, GatewayCallback
from giving_kernel.domain.retry_policy import FailureReason
from giving_kernel.exceptions import GatewayPermanentError, GatewayTransientError
from giving_kernel.gateway.base import PaymentGateway
from giving_kernel.logging_config import get_logger

logger = get_logger("gateway.http")

_SUCCESS_STATUSES = frozenset({"success", "successful", "completed"})
_FAILED_STATUSES = frozenset({"failed", "declined", "cancelled"})


class HttpMobileMoneyGateway(PaymentGateway):
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpMobileMoneyGateway":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def initiate_charge(self, request: ChargeRequest) -> ChargeAck:
        payload = request.to_payload()
        try:
            response = self._client.post(
                "/charges",
                json=payload,
                headers={"Idempotency-Key": str(request.session_id)},
            )
        except httpx.TimeoutException as exc:
            logger.warning(
                "gateway_charge_timeout",
                extra={"session_id": str(request.session_id)},
            )
            raise GatewayTransientError(FailureReason.TIMEOUT, str(exc)) from exc
        except httpx.TransportError as exc:
            logger.warning(
                "gateway_charge_network_error",
                extra={"session_id": str(request.session_id), "error": str(exc)},
            )
            raise GatewayTransientError(FailureReason.NETWORK_ERROR, str(exc)) from exc

        body = _json_body(response)

        if response.status_code == 429:
            raise GatewayTransientError(
                FailureReason.GATEWAY_BUSY, "Gateway busy (HTTP 429)"
            )
        if response.status_code >= 500:
            raise GatewayTransientError(
                FailureReason.GATEWAY_UNAVAILABLE,
                f"Gateway unavailable (HTTP {response.status_code})",
            )
        if response.status_code >= 400:
            reason = str(body.get("reason") or body.get("code") or "gateway_rejected")
            logger.info(
                "gateway_charge_rejected",
                extra={
                    "session_id": str(request.session_id),
                    "http_status": response.status_code,
                    "reason": reason,
                },
            )
            raise GatewayPermanentError(
                reason,
                str(body.get("message") or f"Gateway rejected charge: {reason}"),
            )

        logger.info(
            "gateway_charge_accepted",
            extra={
                "session_id": str(request.session_id),
                "gateway_reference": body.get("reference"),
            },
        )
        return ChargeAck(
            session_id=request.session_id,
            gateway_reference=body.get("reference"),
            raw_response=body,
        )

    @staticmethod
    def parse_callback(payload: Mapping[str, Any]) -> GatewayCallback:
        """
        Convert a webhook body into a GatewayCallback.

        Expected keys: ``session_id``, ``status`` (success/completed/failed),
        ``gateway_tx_id`` (or ``transaction_id``), optional ``reason``.

        Raises:
            GatewayPermanentError("malformed_callback") on a body that cannot
            be interpreted.
        """
        try:
            session_id = UUID(str(payload["session_id"]))
        except (KeyError, ValueError) as exc:
            raise GatewayPermanentError(
                "malformed_callback", "Callback has no valid session_id"
            ) from exc

        status = str(payload.get("status", "")).lower()
        gateway_tx_id = payload.get("gateway_tx_id") or payload.get("transaction_id")

        if status in _SUCCESS_STATUSES:
            if not gateway_tx_id:
                raise GatewayPermanentError(
                    "malformed_callback", "Success callback without gateway_tx_id"
                )
            result = CallbackResult.SUCCESS
        elif status in _FAILED_STATUSES:
            result = CallbackResult.FAILED
        else:
            raise GatewayPermanentError(
                "malformed_callback", f"Unknown callback status '{status}'"
            )

        return GatewayCallback(
            session_id=session_id,
            result=result,
            gateway_tx_id=str(gateway_tx_id) if gateway_tx_id else None,
            failure_reason=(
                str(payload.get("reason") or "gateway_declined")
                if result == CallbackResult.FAILED
                else None
            ),
            raw_payload=dict(payload),
        )


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
