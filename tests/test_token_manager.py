"""
Tests for the OAuth token cache.
"""
import asyncio
import base64
from typing import Any

import httpx
import pytest

from stk_gateway.config import GatewayConfig
from stk_gateway.core.exceptions import AuthError, TransientNetworkError
from stk_gateway.integrations.token_manager import TokenManager
from tests.helpers import FakeClock


def _manager(
    gateway_config: GatewayConfig, clock: FakeClock, handler: Any, **kwargs: Any
) -> TokenManager:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TokenManager(gateway_config, http_client, clock=clock, **kwargs)


class TestTokenManager:
    """Test suite for TokenManager."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fetch_uses_basic_auth_and_no_cache(
        self, gateway_config: GatewayConfig, clock: FakeClock
    ) -> None:
        """Token request carries client credentials and bypasses caches."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"access_token": "abc", "expires_in": "3599"})

        manager = _manager(gateway_config, clock, handler)
        token = await manager.get_token()

        assert token.value == "abc"
        assert token.expires_at == clock.now + 3599
        request = seen[0]
        expected = base64.b64encode(b"test-consumer-key:test-consumer-secret").decode()
        assert request.method == "GET"
        assert request.url.path == "/oauth/v1/generate"
        assert request.url.params["grant_type"] == "client_credentials"
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert request.headers["Cache-Control"] == "no-cache"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cached_token_reused_until_skew_window(
        self, gateway_config: GatewayConfig, clock: FakeClock
    ) -> None:
        """Token is reused while now < expires_at - skew."""
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(
                200, json={"access_token": f"t{calls['n']}", "expires_in": 3600}
            )

        manager = _manager(gateway_config, clock, handler, refresh_skew_seconds=30)

        first = await manager.get_token()
        clock.advance(3569)
        second = await manager.get_token()
        assert second.value == first.value
        assert calls["n"] == 1

        clock.advance(2)  # now inside the skew window
        third = await manager.get_token()
        assert third.value == "t2"
        assert calls["n"] == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_expires_in_uses_default(
        self, gateway_config: GatewayConfig, clock: FakeClock
    ) -> None:
        """Default lifetime applies when expires_in is absent."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "abc"})

        manager = _manager(gateway_config, clock, handler, default_expires_in=3000)
        token = await manager.get_token()
        assert token.expires_at == clock.now + 3000

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(
        self, gateway_config: GatewayConfig, clock: FakeClock
    ) -> None:
        """invalidate() makes the next call fetch a new token."""
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(200, json={"access_token": f"t{calls['n']}"})

        manager = _manager(gateway_config, clock, handler)
        await manager.get_token()
        assert manager.is_valid()

        manager.invalidate()
        assert not manager.is_valid()
        token = await manager.get_token()
        assert token.value == "t2"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalidate_ignores_superseded_token(
        self, gateway_config: GatewayConfig, clock: FakeClock
    ) -> None:
        """A late rejection of an old token keeps the freshly refreshed one."""
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(200, json={"access_token": f"t{calls['n']}"})

        manager = _manager(gateway_config, clock, handler)
        await manager.get_token()
        manager.invalidate("t1")
        fresh = await manager.get_token()
        assert fresh.value == "t2"

        manager.invalidate("t1")

        assert manager.is_valid()
        assert (await manager.get_token()).value == "t2"
        assert calls["n"] == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_2xx_raises_auth_error_with_diagnostics(
        self, gateway_config: GatewayConfig, clock: FakeClock
    ) -> None:
        """Rejected credentials surface status and body."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, text='{"errorMessage": "Invalid credentials"}')

        manager = _manager(gateway_config, clock, handler)
        with pytest.raises(AuthError) as exc_info:
            await manager.get_token()

        assert exc_info.value.status_code == 400
        assert "Invalid credentials" in exc_info.value.body
        assert "test-consumer-secret" not in str(exc_info.value)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_body_without_token_raises_auth_error(
        self, gateway_config: GatewayConfig, clock: FakeClock
    ) -> None:
        """2xx without access_token is an AuthError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"expires_in": "3599"})

        manager = _manager(gateway_config, clock, handler)
        with pytest.raises(AuthError, match="Invalid token response"):
            await manager.get_token()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transport_failure_is_transient(
        self, gateway_config: GatewayConfig, clock: FakeClock
    ) -> None:
        """Unreachable token endpoint is a transient failure."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        manager = _manager(gateway_config, clock, handler)
        with pytest.raises(TransientNetworkError):
            await manager.get_token()

    @pytest.mark.unit
    def test_token_repr_hides_value(self) -> None:
        """Token value never appears in repr."""
        from stk_gateway.core.models import AccessToken

        token = AccessToken(value="super-secret", expires_at=1.0)
        assert "super-secret" not in repr(token)
        assert "super-secret" not in str(token)


class TestTokenManagerConcurrency:
    """Single-flight refresh under concurrent callers."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(
        self, gateway_config: GatewayConfig, clock: FakeClock
    ) -> None:
        """N concurrent get_token() calls cause exactly one fetch."""
        calls = {"n": 0}

        async def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            await asyncio.sleep(0.05)
            return httpx.Response(200, json={"access_token": f"t{calls['n']}"})

        manager = _manager(gateway_config, clock, handler)
        tokens = await asyncio.gather(*(manager.get_token() for _ in range(25)))

        assert calls["n"] == 1
        assert {t.value for t in tokens} == {"t1"}

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_failure(
        self, gateway_config: GatewayConfig, clock: FakeClock
    ) -> None:
        """All waiters observe the same failure, and the next call retries."""
        calls = {"n": 0}

        async def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            await asyncio.sleep(0.05)
            if calls["n"] == 1:
                return httpx.Response(401, text="unauthorized")
            return httpx.Response(200, json={"access_token": "recovered"})

        manager = _manager(gateway_config, clock, handler)
        results = await asyncio.gather(
            *(manager.get_token() for _ in range(10)), return_exceptions=True
        )

        assert calls["n"] == 1
        assert all(isinstance(r, AuthError) for r in results)

        token = await manager.get_token()
        assert token.value == "recovered"
        assert calls["n"] == 2
