"""
Domain models for the STK push flow.

Outbound (client -> gateway):
    PaymentRequest -> SignedPayload -> GatewayAck

Inbound (gateway -> webhook):
    raw callback -> CallbackOutcome -> TransactionDraft -> TransactionRecord

Gateway-facing models use the gateway's PascalCase field names as aliases;
ledger models persist with camelCase aliases.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Lipa na M-Pesa Online paybill transaction type
TRANSACTION_TYPE_PAYBILL_ONLINE = "CustomerPayBillOnline"

# ResponseCode meaning "accepted for async processing" (not "paid")
RESPONSE_CODE_ACCEPTED = "0"

# ResultCode meaning the payer completed the payment
RESULT_CODE_COMPLETED = 0


class AccessToken(BaseModel):
    """Bearer credential issued by the gateway's OAuth endpoint."""

    model_config = ConfigDict(frozen=True)

    value: str
    expires_at: float  # epoch seconds

    def is_valid(self, now: float, skew_seconds: float) -> bool:
        """Usable only while now < expires_at - skew."""
        return now < self.expires_at - skew_seconds

    def __repr__(self) -> str:
        return f"AccessToken(value='***', expires_at={self.expires_at})"

    __str__ = __repr__


class PaymentRequest(BaseModel):
    """Caller-supplied push payment request. Validated by the gateway client."""

    model_config = ConfigDict(frozen=True)

    phone_number: Optional[str] = None
    amount: Optional[float] = None
    account_reference: Optional[str] = None
    transaction_desc: Optional[str] = None


class SignedPayload(BaseModel):
    """Request-scoped STK push body. Never persisted."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    business_short_code: str = Field(alias="BusinessShortCode")
    password: str = Field(alias="Password")
    timestamp: str = Field(alias="Timestamp")
    transaction_type: str = Field(
        default=TRANSACTION_TYPE_PAYBILL_ONLINE, alias="TransactionType"
    )
    amount: int = Field(alias="Amount")
    party_a: str = Field(alias="PartyA")
    party_b: str = Field(alias="PartyB")
    phone_number: str = Field(alias="PhoneNumber")
    callback_url: str = Field(alias="CallBackURL")
    account_reference: str = Field(alias="AccountReference")
    transaction_desc: str = Field(alias="TransactionDesc")

    def to_wire(self) -> Dict[str, Any]:
        """Gateway JSON body."""
        return self.model_dump(by_alias=True)


class GatewayAck(BaseModel):
    """
    Initiation acknowledgment.

    response_code == "0" only means the push was queued; the outcome arrives
    later through the callback.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    merchant_request_id: str = Field(default="", alias="MerchantRequestID")
    checkout_request_id: str = Field(default="", alias="CheckoutRequestID")
    response_code: str = Field(alias="ResponseCode")
    response_description: str = Field(default="", alias="ResponseDescription")
    customer_message: str = Field(default="", alias="CustomerMessage")

    @property
    def accepted(self) -> bool:
        return self.response_code == RESPONSE_CODE_ACCEPTED


class CallbackOutcome(BaseModel):
    """Parsed stkCallback envelope."""

    model_config = ConfigDict(frozen=True)

    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    result_code: int
    result_description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.result_code == RESULT_CODE_COMPLETED


class TransactionStatus(str, Enum):
    """Ledger record status."""

    COMPLETED = "Completed"
    PENDING = "Pending"


class TransactionDraft(BaseModel):
    """A ledger entry before the ledger assigns its id and timestamp."""

    model_config = ConfigDict(
        frozen=True, populate_by_name=True, alias_generator=to_camel
    )

    phone_number: Optional[str] = None
    amount: float = Field(ge=0, allow_inf_nan=False)
    status: TransactionStatus
    checkout_request_id: Optional[str] = None
    receipt_number: Optional[str] = None


class TransactionRecord(TransactionDraft):
    """Immutable ledger entry. Never updated in place."""

    id: str
    timestamp: datetime


class DailyStats(BaseModel):
    """Aggregation over records stamped since local midnight."""

    count: int
    revenue: float
