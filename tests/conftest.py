"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pytest

from stk_gateway.config import GatewayConfig, Settings
from stk_gateway.core.ledger import JsonFileLedgerStore, TransactionLedger
from stk_gateway.integrations.daraja_client import PaymentGatewayClient
from stk_gateway.integrations.executor import RequestExecutor
from stk_gateway.integrations.signer import RequestSigner
from stk_gateway.integrations.token_manager import TokenManager
from tests.helpers import (
    BASE_URL,
    FakeClock,
    FakeDateTimeClock,
    GatewayStub,
    RecordingSleep,
)


@pytest.fixture
def gateway_config() -> GatewayConfig:
    """Valid sandbox gateway configuration."""
    return GatewayConfig(
        consumer_key="test-consumer-key",
        consumer_secret="test-consumer-secret",
        base_url=BASE_URL,
        passkey="test-passkey",
        shortcode="174379",
        callback_url="https://example.test/api/payments/callback",
    )


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        mpesa_consumer_key="test-consumer-key",
        mpesa_consumer_secret="test-consumer-secret",
        mpesa_base_url=BASE_URL,
        mpesa_passkey="test-passkey",
        mpesa_shortcode="174379",
        app_url="https://example.test",
        ledger_path=str(tmp_path / "transactions.json"),
        app_env="test",
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def build_client(
    gateway_config: GatewayConfig, clock: FakeClock, sleep: RecordingSleep
) -> Callable[..., PaymentGatewayClient]:
    """Factory wiring a gateway client onto a GatewayStub."""

    def _build(stub: GatewayStub, **executor_kwargs: Any) -> PaymentGatewayClient:
        http_client = httpx.AsyncClient(transport=stub.transport())
        token_manager = TokenManager(gateway_config, http_client, clock=clock)
        executor = RequestExecutor(
            http_client,
            token_manager,
            sleep=sleep,
            **executor_kwargs,
        )
        signer = RequestSigner(clock=lambda: datetime(2026, 10, 18, 9, 5, 7))
        return PaymentGatewayClient(gateway_config, token_manager, executor, signer)

    return _build


@pytest.fixture
def ledger_clock() -> FakeDateTimeClock:
    return FakeDateTimeClock(datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger(tmp_path: Any, ledger_clock: FakeDateTimeClock) -> TransactionLedger:
    """File-backed ledger in a temporary directory."""
    store = JsonFileLedgerStore(tmp_path / "transactions.json")
    return TransactionLedger(store, capacity=40, clock=ledger_clock)
