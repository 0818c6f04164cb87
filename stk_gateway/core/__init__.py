"""Core domain: error taxonomy, models, ledger and callback reconciliation."""
from .exceptions import (
    AuthError,
    CallbackParseError,
    ConfigError,
    GatewayBusinessError,
    GatewayError,
    PersistenceError,
    TransientNetworkError,
    ValidationError,
)
from .models import (
    AccessToken,
    CallbackOutcome,
    DailyStats,
    GatewayAck,
    PaymentRequest,
    SignedPayload,
    TransactionDraft,
    TransactionRecord,
    TransactionStatus,
)

__all__ = [
    "AccessToken",
    "AuthError",
    "CallbackOutcome",
    "CallbackParseError",
    "ConfigError",
    "DailyStats",
    "GatewayAck",
    "GatewayBusinessError",
    "GatewayError",
    "PaymentRequest",
    "PersistenceError",
    "SignedPayload",
    "TransactionDraft",
    "TransactionRecord",
    "TransactionStatus",
    "TransientNetworkError",
    "ValidationError",
]
