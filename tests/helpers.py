"""Shared test doubles for the gateway and ledger."""
from datetime import datetime
from typing import Any, Dict, List

import httpx

BASE_URL = "https://sandbox.example.test"
TOKEN_URL = f"{BASE_URL}/oauth/v1/generate"
STK_URL = f"{BASE_URL}/mpesa/stkpush/v1/processrequest"


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateTimeClock:
    """Manually set timezone-aware clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSleep:
    """Replaces asyncio.sleep; records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class GatewayStub:
    """
    Programmable fake Daraja server for httpx.MockTransport.

    stk_responses is consumed one entry per STK call; each entry is an
    httpx.Response or an exception to raise. The last entry repeats.
    token_failures are consumed one per token call before tokens are issued.
    """

    def __init__(
        self,
        stk_responses: List[Any] | None = None,
        token_failures: List[Any] | None = None,
    ):
        self.token_calls = 0
        self.stk_calls = 0
        self.stk_requests: List[httpx.Request] = []
        self.token_requests: List[httpx.Request] = []
        self.token_counter = 0
        self.stk_responses = stk_responses or [accepted_response()]
        self.token_failures = list(token_failures or [])

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/v1/generate":
            self.token_calls += 1
            self.token_requests.append(request)
            if self.token_failures:
                failure = self.token_failures.pop(0)
                if isinstance(failure, Exception):
                    raise failure
                return failure
            self.token_counter += 1
            return httpx.Response(
                200,
                json={"access_token": f"token-{self.token_counter}", "expires_in": "3599"},
            )
        self.stk_calls += 1
        self.stk_requests.append(request)
        index = min(self.stk_calls - 1, len(self.stk_responses) - 1)
        outcome = self.stk_responses[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def accepted_response() -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_191220191020363925",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        },
    )


def stk_callback(
    result_code: int = 0,
    items: List[Dict[str, Any]] | None = None,
    checkout_request_id: str = "ws_CO_191220191020363925",
    result_desc: str = "The service request is processed successfully.",
) -> Dict[str, Any]:
    """Build a gateway callback body."""
    callback: Dict[str, Any] = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc,
    }
    if items is not None:
        callback["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": callback}}
