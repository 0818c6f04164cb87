"""
Daraja STK push client.

Flow for one initiation (strictly sequential):
1. Validate and normalize the request (no network)
2. Sign the payload with a fresh timestamp
3. Send through the request executor, which obtains the bearer token
   inside its retry loop
"""
import math
from typing import Optional

import httpx
import structlog

from stk_gateway.config import GatewayConfig, Settings
from stk_gateway.core.exceptions import GatewayBusinessError, ValidationError
from stk_gateway.core.models import (
    TRANSACTION_TYPE_PAYBILL_ONLINE,
    GatewayAck,
    PaymentRequest,
    SignedPayload,
)
from stk_gateway.core.phone import mask_phone_number, normalize_phone_number
from stk_gateway.integrations.executor import RequestExecutor
from stk_gateway.integrations.signer import RequestSigner
from stk_gateway.integrations.token_manager import TokenManager

logger = structlog.get_logger(__name__)

STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"


def round_amount(amount: float) -> int:
    """Round half up to a whole currency unit (100.5 -> 101)."""
    return int(amount + 0.5)


class PaymentGatewayClient:
    """
    Initiates STK push payments.

    Holds its own configuration and token cache; construct one per
    application and pass it to request handlers.
    """

    def __init__(
        self,
        config: GatewayConfig,
        token_manager: TokenManager,
        executor: RequestExecutor,
        signer: Optional[RequestSigner] = None,
    ):
        """
        Initialize gateway client.

        Args:
            config: Gateway configuration
            token_manager: Bearer token cache
            executor: Retrying HTTP executor
            signer: Password/timestamp derivation
        """
        self.config = config
        self.token_manager = token_manager
        self.executor = executor
        self.signer = signer or RequestSigner()

        logger.info(
            "gateway_client_initialized",
            base_url=config.base_url,
            shortcode=config.shortcode,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient
    ) -> "PaymentGatewayClient":
        """
        Wire a client from application settings.

        Raises:
            ConfigError: If the gateway configuration is invalid
        """
        config = settings.gateway_config()
        token_manager = TokenManager(
            config,
            http_client,
            refresh_skew_seconds=settings.token_refresh_skew_seconds,
            default_expires_in=settings.token_default_expires_in,
        )
        executor = RequestExecutor(
            http_client,
            token_manager,
            max_attempts=settings.gateway_retry_max_attempts,
            base_delay=settings.gateway_retry_base_delay,
            max_delay=settings.gateway_retry_max_delay,
        )
        return cls(config, token_manager, executor)

    @staticmethod
    def validate_payment_request(request: PaymentRequest) -> None:
        """
        Validate payment request parameters.

        Raises:
            ValidationError: If validation fails
        """
        if not request.phone_number:
            raise ValidationError("Invalid phone number")
        amount = request.amount
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise ValidationError("Invalid amount")
        if not request.account_reference or not request.account_reference.strip():
            raise ValidationError("Account reference is required")

    def build_payload(self, request: PaymentRequest) -> SignedPayload:
        """
        Build and sign the STK push body.

        Raises:
            ValidationError: If the phone number cannot be normalized
        """
        phone = normalize_phone_number(request.phone_number or "")
        timestamp = self.signer.timestamp()
        reference = (request.account_reference or "").strip()

        return SignedPayload(
            business_short_code=self.config.shortcode,
            password=self.signer.password(
                self.config.shortcode, self.config.passkey, timestamp
            ),
            timestamp=timestamp,
            transaction_type=TRANSACTION_TYPE_PAYBILL_ONLINE,
            amount=round_amount(request.amount or 0),
            party_a=phone,
            party_b=self.config.shortcode,
            phone_number=phone,
            callback_url=self.config.callback_url,
            account_reference=reference,
            transaction_desc=request.transaction_desc or f"Payment for {reference}",
        )

    async def initiate_payment(self, request: PaymentRequest) -> GatewayAck:
        """
        Send an STK push to the payer's phone.

        Args:
            request: Payment request

        Returns:
            GatewayAck: Acknowledgment with ResponseCode "0"

        Raises:
            ValidationError: Bad input (raised before any network call)
            AuthError: Credentials rejected after the attempt budget
            TransientNetworkError: Gateway unreachable after the attempt budget
            GatewayBusinessError: Gateway rejected the request
        """
        self.validate_payment_request(request)
        # normalize before touching the network so format errors fail fast
        normalize_phone_number(request.phone_number or "")

        payload = self.build_payload(request)

        logger.info(
            "initiating_payment",
            phone_number=mask_phone_number(payload.phone_number),
            amount=payload.amount,
            reference=payload.account_reference,
        )

        data = await self.executor.send(
            f"{self.config.base_url}{STK_PUSH_PATH}",
            payload.to_wire(),
        )

        ack = GatewayAck.model_validate(data)
        if not ack.accepted:
            raise GatewayBusinessError(
                ack.response_description or "Payment request failed",
                response_code=ack.response_code,
            )

        logger.info(
            "payment_initiated",
            checkout_request_id=ack.checkout_request_id,
            merchant_request_id=ack.merchant_request_id,
        )
        return ack
