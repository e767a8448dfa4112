"""
Tests for the httpx mobile-money adapter.

Requests are served by httpx.MockTransport, so no network is touched.
"""

import json
from uuid import uuid4

import httpx
import pytest

from giving_kernel.domain.dtos import CallbackResult, ChargeRequest
from giving_kernel.exceptions import GatewayPermanentError, GatewayTransientError
from giving_kernel.gateway.http_gateway import HttpMobileMoneyGateway


@pytest.fixture
def charge():
    return ChargeRequest(
        session_id=uuid4(),
        transaction_id=uuid4(),
        reference="GIV-20240101-0001",
        phone_number="0241234567",
        network="MTN",
        amount=10000,
        currency="GHS",
    )


def _gateway(handler) -> HttpMobileMoneyGateway:
    return HttpMobileMoneyGateway(
        "https://gateway.test/v1",
        api_key="sk_test",
        transport=httpx.MockTransport(handler),
    )


def _respond(status_code, body=None):
    def handler(request):
        return httpx.Response(status_code, json=body if body is not None else {})

    return handler


class TestInitiateCharge:
    def test_accepted_charge(self, charge):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(202, json={"reference": "MP-77"})

        with _gateway(handler) as gateway:
            ack = gateway.initiate_charge(charge)

        assert ack.session_id == charge.session_id
        assert ack.gateway_reference == "MP-77"
        assert ack.raw_response["reference"] == "MP-77"

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/charges"
        assert request.headers["Idempotency-Key"] == str(charge.session_id)
        assert request.headers["Authorization"] == "Bearer sk_test"
        body = json.loads(request.content)
        assert body["amount"] == 10000
        assert body["phone_number"] == "0241234567"
        assert body["session_id"] == str(charge.session_id)

    @pytest.mark.parametrize(
        "status_code, reason",
        [(429, "gateway_busy"), (500, "gateway_unavailable"), (503, "gateway_unavailable")],
    )
    def test_retryable_statuses(self, charge, status_code, reason):
        gateway = _gateway(_respond(status_code))

        with pytest.raises(GatewayTransientError) as exc_info:
            gateway.initiate_charge(charge)
        assert exc_info.value.reason == reason

    def test_rejection_carries_gateway_reason(self, charge):
        gateway = _gateway(
            _respond(400, {"reason": "invalid_phone_number", "message": "Unknown MSISDN"})
        )

        with pytest.raises(GatewayPermanentError) as exc_info:
            gateway.initiate_charge(charge)
        assert exc_info.value.reason == "invalid_phone_number"
        assert str(exc_info.value) == "Unknown MSISDN"

    def test_rejection_without_body(self, charge):
        def handler(request):
            return httpx.Response(403, text="forbidden")

        with pytest.raises(GatewayPermanentError) as exc_info:
            _gateway(handler).initiate_charge(charge)
        assert exc_info.value.reason == "gateway_rejected"

    def test_timeout(self, charge):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(GatewayTransientError) as exc_info:
            _gateway(handler).initiate_charge(charge)
        assert exc_info.value.reason == "timeout"

    def test_network_error(self, charge):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayTransientError) as exc_info:
            _gateway(handler).initiate_charge(charge)
        assert exc_info.value.reason == "network_error"


class TestParseCallback:
    def test_success(self):
        session_id = uuid4()

        callback = HttpMobileMoneyGateway.parse_callback(
            {"session_id": str(session_id), "status": "SUCCESSFUL", "transaction_id": "MP-1"}
        )

        assert callback.session_id == session_id
        assert callback.result == CallbackResult.SUCCESS
        assert callback.gateway_tx_id == "MP-1"
        assert callback.failure_reason is None

    def test_failure_defaults_reason(self):
        callback = HttpMobileMoneyGateway.parse_callback(
            {"session_id": str(uuid4()), "status": "declined"}
        )

        assert callback.result == CallbackResult.FAILED
        assert callback.failure_reason == "gateway_declined"

    def test_failure_reason_from_body(self):
        callback = HttpMobileMoneyGateway.parse_callback(
            {"session_id": str(uuid4()), "status": "failed", "reason": "insufficient_funds"}
        )

        assert callback.failure_reason == "insufficient_funds"

    @pytest.mark.parametrize(
        "payload",
        [
            {"status": "success", "gateway_tx_id": "MP-1"},
            {"session_id": "not-a-uuid", "status": "success", "gateway_tx_id": "MP-1"},
            {"session_id": "00000000-0000-0000-0000-000000000001", "status": "success"},
            {"session_id": "00000000-0000-0000-0000-000000000001", "status": "pending"},
        ],
    )
    def test_malformed(self, payload):
        with pytest.raises(GatewayPermanentError) as exc_info:
            HttpMobileMoneyGateway.parse_callback(payload)
        assert exc_info.value.reason == "malformed_callback"
