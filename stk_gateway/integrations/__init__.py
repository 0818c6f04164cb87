"""Daraja API integration: token cache, signing, retrying executor, STK client."""
from .daraja_client import PaymentGatewayClient
from .executor import RequestExecutor
from .signer import RequestSigner
from .token_manager import TokenManager

__all__ = ["PaymentGatewayClient", "RequestExecutor", "RequestSigner", "TokenManager"]
