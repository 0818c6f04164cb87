"""
Error taxonomy for the STK push gateway.

Every error carries:
- An error code (for client handling)
- A user message (safe to show, never contains credentials or tokens)
- An HTTP status code (for API responses)

Callers branch on the exception class, never on message text.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for all gateway and ledger errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        user_message: Optional[str] = None,
        http_status: int = 500,
        **kwargs: Any,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.user_message = user_message or "An error occurred. Please try again."
        self.http_status = http_status
        self.metadata = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.user_message,
                "type": self.__class__.__name__,
            }
        }


class ConfigError(GatewayError):
    """Invalid or missing gateway configuration. Fatal at startup."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message=message,
            error_code="config_invalid",
            user_message="Payment service is not configured.",
            http_status=500,
            **kwargs,
        )


class ValidationError(GatewayError):
    """Bad caller input. Surfaced immediately, never retried."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message=message,
            error_code="validation_failed",
            user_message=message,
            http_status=400,
            **kwargs,
        )


class AuthError(GatewayError):
    """
    Credential acquisition failed or the gateway rejected the bearer token.

    Retried once per attempt with a freshly fetched token.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message=message,
            error_code="gateway_auth_failed",
            user_message="Payment service is temporarily unavailable.",
            http_status=503,
            **kwargs,
        )
        self.status_code = status_code
        self.body = body


class TransientNetworkError(GatewayError):
    """Transport failure or unexpected HTTP status. Retried with backoff."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message=message,
            error_code="gateway_unavailable",
            user_message="Payment service is temporarily unavailable.",
            http_status=503,
            **kwargs,
        )
        self.status_code = status_code
        self.body = body


class GatewayBusinessError(GatewayError):
    """The gateway made a definitive decision to reject the request. Terminal."""

    def __init__(
        self,
        message: str,
        response_code: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message=message,
            error_code="gateway_rejected",
            user_message=message,
            http_status=502,
            **kwargs,
        )
        self.response_code = response_code


class CallbackParseError(GatewayError):
    """Malformed inbound callback. Logged and acknowledged, never fatal."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message=message,
            error_code="callback_malformed",
            user_message="Failed to process callback",
            http_status=500,
            **kwargs,
        )


class PersistenceError(GatewayError):
    """Ledger read or write failed. The stored collection is left unchanged."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message=message,
            error_code="ledger_unavailable",
            user_message="Transaction storage is unavailable.",
            http_status=500,
            **kwargs,
        )


def truncate_body(body: str, limit: int = 500) -> str:
    """Clip an upstream response body for diagnostics."""
    if len(body) <= limit:
        return body
    return body[:limit] + "...[truncated]"
