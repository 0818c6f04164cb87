"""
OAuth client-credentials token cache with single-flight refresh.

Concurrent callers that find no usable token share one in-flight refresh:
all of them observe the same token or the same AuthError.
"""
import asyncio
import base64
import time
from typing import Callable, Optional

import httpx
import structlog

from stk_gateway.config import GatewayConfig
from stk_gateway.core.exceptions import AuthError, TransientNetworkError, truncate_body
from stk_gateway.core.models import AccessToken
from stk_gateway.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

TOKEN_PATH = "/oauth/v1/generate"


class TokenManager:
    """
    Acquires and caches the gateway bearer token.

    The cached token is the only cross-call mutable state in the client.
    Refreshes are coordinated through a shared asyncio task.
    """

    def __init__(
        self,
        config: GatewayConfig,
        http_client: httpx.AsyncClient,
        refresh_skew_seconds: float = 30.0,
        default_expires_in: int = 3000,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize token manager.

        Args:
            config: Gateway configuration
            http_client: Shared HTTP client
            refresh_skew_seconds: Treat tokens as expired this many seconds early
            default_expires_in: Lifetime assumed when the response omits expires_in
            clock: Epoch-seconds clock (injectable for tests)
        """
        self.config = config
        self.http_client = http_client
        self.refresh_skew_seconds = refresh_skew_seconds
        self.default_expires_in = default_expires_in
        self._clock = clock
        self._token: Optional[AccessToken] = None
        self._refresh_task: Optional["asyncio.Task[AccessToken]"] = None

    def is_valid(self) -> bool:
        """True while a cached token is usable."""
        return self._token is not None and self._token.is_valid(
            self._clock(), self.refresh_skew_seconds
        )

    def invalidate(self, rejected_value: Optional[str] = None) -> None:
        """
        Force the next get_token() to fetch a fresh token.

        Args:
            rejected_value: Token the gateway rejected. When given, the cache
                is only cleared if it still holds that token, so a token
                refreshed by a concurrent caller survives.
        """
        if self._token is None:
            return
        if rejected_value is not None and self._token.value != rejected_value:
            logger.info("token_invalidation_skipped")
            return
        logger.info("token_invalidated")
        self._token = None

    async def get_token(self) -> AccessToken:
        """
        Return the cached token or join/start a refresh.

        Raises:
            AuthError: If the token endpoint rejects the credentials
            TransientNetworkError: If the token endpoint cannot be reached
        """
        if self.is_valid():
            return self._token  # type: ignore[return-value]

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh())

        # shield: one cancelled caller must not cancel the shared refresh
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> AccessToken:
        try:
            token = await self._fetch()
        except Exception:
            metrics.record_token_refresh("failed")
            raise
        self._token = token
        metrics.record_token_refresh("success")
        return token

    def _basic_auth(self) -> str:
        credentials = f"{self.config.consumer_key}:{self.config.consumer_secret}"
        return base64.b64encode(credentials.encode("utf-8")).decode("ascii")

    async def _fetch(self) -> AccessToken:
        logger.info("requesting_access_token")
        started = time.monotonic()

        try:
            response = await self.http_client.get(
                f"{self.config.base_url}{TOKEN_PATH}",
                params={"grant_type": "client_credentials"},
                headers={
                    "Authorization": f"Basic {self._basic_auth()}",
                    "Cache-Control": "no-cache",
                },
            )
        except httpx.TransportError as e:
            metrics.record_gateway_call("token", "transient", time.monotonic() - started)
            logger.error("token_request_transport_error", error=type(e).__name__)
            raise TransientNetworkError(f"Token endpoint unreachable: {type(e).__name__}")

        duration = time.monotonic() - started

        if not response.is_success:
            metrics.record_gateway_call("token", "auth", duration)
            body = truncate_body(response.text)
            logger.error(
                "token_request_failed",
                status_code=response.status_code,
                body=body,
            )
            raise AuthError(
                f"Failed to get access token: HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict) or not data.get("access_token"):
            metrics.record_gateway_call("token", "auth", duration)
            logger.error("token_response_invalid", status_code=response.status_code)
            raise AuthError(
                "Invalid token response from server",
                status_code=response.status_code,
                body=truncate_body(response.text),
            )

        try:
            expires_in = int(data.get("expires_in") or self.default_expires_in)
        except (TypeError, ValueError):
            expires_in = self.default_expires_in

        metrics.record_gateway_call("token", "success", duration)
        logger.info("access_token_obtained", expires_in=expires_in)

        return AccessToken(
            value=str(data["access_token"]),
            expires_at=self._clock() + expires_in,
        )
