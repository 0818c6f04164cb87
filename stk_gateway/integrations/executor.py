"""
HTTP exchange with bounded retry for gateway business endpoints.

Two orthogonal policies are composed:
- A tenacity retry/backoff policy driven by the failure classification
- A token-invalidation hook fired only for AuthError

Classification per attempt:
- HTTP 401/403, or a gateway invalid-token error      -> AuthError (retry now)
- Any other non-2xx status                            -> TransientNetworkError (backoff)
- 2xx with ResponseCode != "0"                        -> GatewayBusinessError (terminal)
- Timeout / connection failure                        -> TransientNetworkError (backoff)

Token acquisition runs inside the same attempt loop, so a token endpoint
failure consumes an attempt and is retried like any other.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stk_gateway.core.exceptions import (
    AuthError,
    GatewayBusinessError,
    TransientNetworkError,
    truncate_body,
)
from stk_gateway.core.models import RESPONSE_CODE_ACCEPTED
from stk_gateway.integrations.token_manager import TokenManager
from stk_gateway.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Daraja reports a bad bearer token as errorCode 404.001.03
INVALID_TOKEN_ERROR_CODES = frozenset({"404.001.03"})
INVALID_TOKEN_MESSAGES = ("invalid access token", "expired access token", "invalid token")


def is_invalid_token_response(status_code: int, data: Any) -> bool:
    """True when the gateway rejected the bearer token."""
    if status_code in (401, 403):
        return True
    if not isinstance(data, dict):
        return False
    if str(data.get("errorCode", "")) in INVALID_TOKEN_ERROR_CODES:
        return True
    message = str(data.get("errorMessage") or data.get("errorCode") or "").lower()
    return any(marker in message for marker in INVALID_TOKEN_MESSAGES)


class BackoffPolicy:
    """
    Wait strategy: exponential backoff for transient failures, none for auth.

    Delay before retry n is base * 2**(n-1), capped at max_delay.
    """

    def __init__(self, base_delay: float = 2.0, max_delay: float = 10.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._exponential = wait_exponential(multiplier=base_delay, max=max_delay)

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, AuthError):
            return 0.0
        return self._exponential(retry_state)


class RequestExecutor:
    """
    Sends signed payloads to the gateway with bounded retry.

    Exhausting the attempt budget re-raises the last error unchanged in kind.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_manager: TokenManager,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        max_delay: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize request executor.

        Args:
            http_client: Shared HTTP client (carries the request timeout)
            token_manager: Token cache, invalidated on AuthError
            max_attempts: Total attempts including the first
            base_delay: Backoff base (seconds)
            max_delay: Backoff cap (seconds)
            sleep: Cooperative delay (injectable for tests)
        """
        self.http_client = http_client
        self.token_manager = token_manager
        self.max_attempts = max_attempts
        self.backoff = BackoffPolicy(base_delay=base_delay, max_delay=max_delay)
        self._sleep = sleep

    async def send(
        self, endpoint: str, payload: Dict[str, Any], token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        POST payload to endpoint.

        Args:
            endpoint: Absolute gateway URL
            payload: JSON body
            token: Bearer token for the first attempt (fetched when omitted)

        Returns:
            Dict[str, Any]: Decoded gateway response (ResponseCode == "0")

        Raises:
            AuthError: Token still rejected after the attempt budget
            TransientNetworkError: Transport/HTTP failure after the attempt budget
            GatewayBusinessError: Gateway rejected the request (not retried)
        """
        state: Dict[str, Any] = {"token": token, "stale": token is None}

        def on_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            kind = "auth" if isinstance(exc, AuthError) else "transient"
            if isinstance(exc, AuthError):
                self.token_manager.invalidate(state["token"])
                state["stale"] = True
            metrics.record_retry(kind)
            logger.info(
                "gateway_request_retrying",
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                error_kind=kind,
                delay_seconds=retry_state.upcoming_sleep,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.backoff,
            retry=retry_if_exception_type((AuthError, TransientNetworkError)),
            before_sleep=on_retry,
            sleep=self._sleep,
            reraise=True,
        )

        result: Dict[str, Any] = {}
        try:
            async for attempt in retrying:
                with attempt:
                    if state["stale"]:
                        fresh = await self.token_manager.get_token()
                        state["token"] = fresh.value
                        state["stale"] = False
                    result = await self._attempt(
                        endpoint,
                        payload,
                        str(state["token"]),
                        attempt.retry_state.attempt_number,
                    )
        except (AuthError, TransientNetworkError) as e:
            logger.error(
                "gateway_request_exhausted",
                error_type=type(e).__name__,
                attempts=self.max_attempts,
            )
            raise
        return result

    async def _attempt(
        self, endpoint: str, payload: Dict[str, Any], token: str, attempt: int
    ) -> Dict[str, Any]:
        started = time.monotonic()
        try:
            response = await self.http_client.post(
                endpoint,
                json=payload,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.TimeoutException as e:
            metrics.record_gateway_call("stk_push", "transient", time.monotonic() - started)
            logger.warning("gateway_request_timeout", attempt=attempt, error=type(e).__name__)
            raise TransientNetworkError(f"Gateway request timed out: {type(e).__name__}")
        except httpx.TransportError as e:
            metrics.record_gateway_call("stk_push", "transient", time.monotonic() - started)
            logger.warning("gateway_transport_error", attempt=attempt, error=type(e).__name__)
            raise TransientNetworkError(f"Gateway transport error: {type(e).__name__}")

        duration = time.monotonic() - started

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            body = truncate_body(response.text)
            logger.error(
                "gateway_request_failed",
                status_code=response.status_code,
                attempt=attempt,
                body=body,
            )
            if is_invalid_token_response(response.status_code, data):
                metrics.record_gateway_call("stk_push", "auth", duration)
                raise AuthError(
                    "Gateway rejected the access token",
                    status_code=response.status_code,
                    body=body,
                )
            metrics.record_gateway_call("stk_push", "transient", duration)
            message = data.get("errorMessage") if isinstance(data, dict) else None
            raise TransientNetworkError(
                message or f"Gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        if not isinstance(data, dict):
            metrics.record_gateway_call("stk_push", "transient", duration)
            logger.error("gateway_response_not_json", status_code=response.status_code)
            raise TransientNetworkError(
                "Gateway returned a non-JSON response",
                status_code=response.status_code,
                body=truncate_body(response.text),
            )

        response_code = str(data.get("ResponseCode", ""))
        if response_code != RESPONSE_CODE_ACCEPTED:
            metrics.record_gateway_call("stk_push", "rejected", duration)
            description = data.get("ResponseDescription") or "Payment request failed"
            logger.error(
                "gateway_request_rejected",
                response_code=response_code,
                response_description=description,
            )
            raise GatewayBusinessError(description, response_code=response_code)

        metrics.record_gateway_call("stk_push", "success", duration)
        return data
