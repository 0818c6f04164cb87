"""
Tests for the STK push client.
"""
import base64
import json
from typing import Callable

import httpx
import pytest

from stk_gateway.core.exceptions import (
    GatewayBusinessError,
    TransientNetworkError,
    ValidationError,
)
from stk_gateway.core.models import PaymentRequest
from stk_gateway.core.phone import mask_phone_number, normalize_phone_number
from stk_gateway.integrations.daraja_client import PaymentGatewayClient, round_amount
from tests.helpers import TOKEN_URL, GatewayStub, RecordingSleep


def _request(**overrides: object) -> PaymentRequest:
    data = {
        "phone_number": "0712345678",
        "amount": 100,
        "account_reference": "ORDER-1001",
        "transaction_desc": "Payment",
    }
    data.update(overrides)
    return PaymentRequest(**data)


class TestPhoneNumbers:
    """Normalization and masking."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("0712345678", "254712345678"),
            ("712345678", "254712345678"),
            ("254712345678", "254712345678"),
            ("+254 712 345 678", "254712345678"),
            ("0110-123-456", "254110123456"),
        ],
    )
    def test_normalize(self, raw: str, expected: str) -> None:
        assert normalize_phone_number(raw) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", ["12345", "1712345678", "255712345678", "", "07123456789"])
    def test_normalize_rejects(self, raw: str) -> None:
        with pytest.raises(ValidationError, match="invalid phone number format"):
            normalize_phone_number(raw)

    @pytest.mark.unit
    def test_mask_hides_middle_digits(self) -> None:
        assert mask_phone_number("0712345678") == "254712****78"

    @pytest.mark.unit
    def test_mask_unparseable(self) -> None:
        assert mask_phone_number("12345") == "****"


class TestValidation:
    """Fail-fast validation without network access."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"phone_number": None}, "Invalid phone number"),
            ({"phone_number": ""}, "Invalid phone number"),
            ({"amount": None}, "Invalid amount"),
            ({"amount": 0}, "Invalid amount"),
            ({"amount": -5}, "Invalid amount"),
            ({"amount": float("inf")}, "Invalid amount"),
            ({"amount": float("nan")}, "Invalid amount"),
            ({"account_reference": ""}, "Account reference is required"),
            ({"account_reference": "   "}, "Account reference is required"),
            ({"phone_number": "12345"}, "invalid phone number format"),
        ],
    )
    async def test_invalid_requests_never_reach_gateway(
        self,
        build_client: Callable[..., PaymentGatewayClient],
        overrides: dict,
        message: str,
    ) -> None:
        stub = GatewayStub()
        client = build_client(stub)

        with pytest.raises(ValidationError, match=message):
            await client.initiate_payment(_request(**overrides))

        assert stub.token_calls == 0
        assert stub.stk_calls == 0


class TestInitiatePayment:
    """End-to-end initiation against a fake gateway."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_payload_shape(
        self, build_client: Callable[..., PaymentGatewayClient]
    ) -> None:
        stub = GatewayStub()
        client = build_client(stub)

        ack = await client.initiate_payment(_request(amount=100.6))

        assert ack.response_code == "0"
        assert ack.checkout_request_id == "ws_CO_191220191020363925"
        assert ack.merchant_request_id == "29115-34620561-1"

        request = stub.stk_requests[0]
        assert request.headers["Authorization"] == "Bearer token-1"
        body = json.loads(request.content)
        assert body == {
            "BusinessShortCode": "174379",
            "Password": base64.b64encode(b"174379test-passkey20261018090507").decode(),
            "Timestamp": "20261018090507",
            "TransactionType": "CustomerPayBillOnline",
            "Amount": 101,
            "PartyA": "254712345678",
            "PartyB": "174379",
            "PhoneNumber": "254712345678",
            "CallBackURL": "https://example.test/api/payments/callback",
            "AccountReference": "ORDER-1001",
            "TransactionDesc": "Payment",
        }

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_default_description(
        self, build_client: Callable[..., PaymentGatewayClient]
    ) -> None:
        stub = GatewayStub()
        client = build_client(stub)

        await client.initiate_payment(_request(transaction_desc=None))

        body = json.loads(stub.stk_requests[0].content)
        assert body["TransactionDesc"] == "Payment for ORDER-1001"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_token_reused_across_payments(
        self, build_client: Callable[..., PaymentGatewayClient]
    ) -> None:
        stub = GatewayStub()
        client = build_client(stub)

        await client.initiate_payment(_request())
        await client.initiate_payment(_request(phone_number="712345678"))

        assert stub.token_calls == 1
        assert stub.stk_calls == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_token_endpoint_timeout_is_retried(
        self, build_client: Callable[..., PaymentGatewayClient], sleep: RecordingSleep
    ) -> None:
        """A failed first token fetch consumes an attempt instead of failing the call."""
        timeout = httpx.ConnectTimeout("timed out", request=httpx.Request("GET", TOKEN_URL))
        stub = GatewayStub(token_failures=[timeout])
        client = build_client(stub)

        ack = await client.initiate_payment(_request())

        assert ack.accepted
        assert stub.token_calls == 2
        assert stub.stk_calls == 1
        assert stub.stk_requests[0].headers["Authorization"] == "Bearer token-1"
        assert sleep.delays == [2.0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_token_endpoint_down_exhausts_budget(
        self, build_client: Callable[..., PaymentGatewayClient], sleep: RecordingSleep
    ) -> None:
        timeout = httpx.ConnectTimeout("timed out", request=httpx.Request("GET", TOKEN_URL))
        stub = GatewayStub(token_failures=[timeout, timeout, timeout])
        client = build_client(stub)

        with pytest.raises(TransientNetworkError):
            await client.initiate_payment(_request())

        assert stub.token_calls == 3
        assert stub.stk_calls == 0
        assert sleep.delays == [2.0, 4.0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejection_surfaces_gateway_description(
        self, build_client: Callable[..., PaymentGatewayClient]
    ) -> None:
        stub = GatewayStub(
            [
                httpx.Response(
                    200,
                    json={
                        "MerchantRequestID": "1",
                        "CheckoutRequestID": "2",
                        "ResponseCode": "2001",
                        "ResponseDescription": "The initiator information is invalid.",
                    },
                )
            ]
        )
        client = build_client(stub)

        with pytest.raises(GatewayBusinessError, match="initiator information is invalid"):
            await client.initiate_payment(_request())


@pytest.mark.unit
@pytest.mark.parametrize(
    "amount,expected", [(100.6, 101), (100.4, 100), (100.5, 101), (10, 10), (0.6, 1)]
)
def test_round_amount(amount: float, expected: int) -> None:
    assert round_amount(amount) == expected
