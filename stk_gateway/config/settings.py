"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stk_gateway.core.exceptions import ConfigError

CALLBACK_PATH = "/api/payments/callback"


class GatewayConfig(BaseModel):
    """
    Validated, immutable connection parameters for the Daraja API.

    Constructed once per client lifetime.
    """

    model_config = ConfigDict(frozen=True)

    consumer_key: str = Field(..., min_length=1)
    consumer_secret: str = Field(..., min_length=1)
    base_url: str = Field(..., min_length=1)
    passkey: str = Field(..., min_length=1)
    shortcode: str = Field(..., min_length=1)
    callback_url: str = Field(..., min_length=1)

    @field_validator("consumer_key", "consumer_secret", "passkey", "shortcode")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject whitespace-only values."""
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate base URL and drop trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("base URL must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("callback_url")
    @classmethod
    def validate_callback_url(cls, v: str) -> str:
        """The gateway only delivers callbacks over HTTPS."""
        if not v.startswith("https://"):
            raise ValueError("callback URL must use HTTPS")
        return v

    def __repr__(self) -> str:
        return (
            f"GatewayConfig(base_url={self.base_url!r}, shortcode={self.shortcode!r}, "
            f"callback_url={self.callback_url!r})"
        )

    __str__ = __repr__


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Daraja Configuration
    mpesa_consumer_key: str = Field(default="", description="Daraja app consumer key")
    mpesa_consumer_secret: str = Field(default="", description="Daraja app consumer secret")
    mpesa_base_url: str = Field(
        default="https://sandbox.safaricom.co.ke", description="Daraja API base URL"
    )
    mpesa_passkey: str = Field(default="", description="Lipa na M-Pesa Online passkey")
    mpesa_shortcode: str = Field(default="", description="Business shortcode")
    mpesa_callback_url: Optional[str] = Field(
        default=None, description="STK callback URL (derived from app_url if unset)"
    )
    app_url: str = Field(default="", description="Public base URL of this service")

    # Token Management
    token_refresh_skew_seconds: float = Field(
        default=30.0, description="Treat tokens as expired this many seconds early"
    )
    token_default_expires_in: int = Field(
        default=3000, description="Token lifetime when the gateway omits expires_in"
    )

    # Request Execution
    http_timeout_seconds: float = Field(default=30.0, description="Per-request HTTP timeout")
    gateway_retry_max_attempts: int = Field(default=3, description="Max gateway attempts")
    gateway_retry_base_delay: float = Field(
        default=2.0, description="Base delay for retry backoff (seconds)"
    )
    gateway_retry_max_delay: float = Field(
        default=10.0, description="Cap on retry backoff delay (seconds)"
    )

    # Ledger
    ledger_backend: str = Field(default="file", description="Ledger store (file/redis)")
    ledger_path: str = Field(default="transactions.json", description="Ledger file path")
    ledger_key: str = Field(default="transactions", description="Ledger Redis key")
    ledger_capacity: int = Field(default=40, description="Max records kept in the ledger")
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL")

    # Application Configuration
    app_name: str = Field(default="stk-gateway", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:3000",
        description="CORS allowed origins (comma-separated)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("ledger_backend")
    @classmethod
    def validate_ledger_backend(cls, v: str) -> str:
        """Validate ledger backend."""
        if v.lower() not in ("file", "redis"):
            raise ValueError("ledger_backend must be 'file' or 'redis'")
        return v.lower()

    @field_validator("gateway_retry_max_attempts", "ledger_capacity")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate positive counts."""
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def callback_url(self) -> str:
        """Explicit callback URL, or the webhook route under app_url."""
        if self.mpesa_callback_url:
            return self.mpesa_callback_url
        if not self.app_url:
            return ""
        return f"{self.app_url.rstrip('/')}{CALLBACK_PATH}"

    def gateway_config(self) -> GatewayConfig:
        """
        Build the immutable gateway configuration.

        Raises:
            ConfigError: If any field is missing or invalid
        """
        try:
            return GatewayConfig(
                consumer_key=self.mpesa_consumer_key,
                consumer_secret=self.mpesa_consumer_secret,
                base_url=self.mpesa_base_url,
                passkey=self.mpesa_passkey,
                shortcode=self.mpesa_shortcode,
                callback_url=self.callback_url,
            )
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise ConfigError(f"Invalid gateway configuration: {', '.join(fields)}", fields=fields)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
