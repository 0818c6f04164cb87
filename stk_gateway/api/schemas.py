"""
Pydantic schemas for API request/response models.

Field names on the wire are camelCase, matching the dashboard client.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitiatePaymentRequest(CamelModel):
    """Request schema for initiating an STK push."""

    phone_number: str = Field(
        ..., min_length=9, max_length=13, description="254XXXXXXXXX or 0XXXXXXXXX"
    )
    amount: float = Field(
        ..., ge=1, allow_inf_nan=False, description="Amount in whole shillings"
    )
    account_reference: str = Field(..., min_length=1, description="Account reference")
    transaction_desc: Optional[str] = Field(
        default=None, description="Description shown on the payer's phone"
    )

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "phoneNumber": "0712345678",
                    "amount": 100,
                    "accountReference": "ORDER-1001",
                    "transactionDesc": "Payment",
                }
            ]
        },
    )


class InitiatePaymentResponse(BaseModel):
    """Gateway acknowledgment, passed through with the gateway's field names."""

    MerchantRequestID: str = Field(..., description="Merchant request ID")
    CheckoutRequestID: str = Field(..., description="Checkout request ID")
    ResponseCode: str = Field(..., description="'0' when the push was accepted")
    ResponseDescription: str = Field(..., description="Gateway response description")
    CustomerMessage: str = Field(..., description="Message for the payer")


class CallbackAckResponse(BaseModel):
    """Response schema for the callback webhook."""

    received: bool = Field(..., description="Callback accepted")


class TransactionResponse(CamelModel):
    """Ledger record."""

    id: str
    phone_number: Optional[str] = None
    amount: float
    status: str
    timestamp: str = Field(..., description="Record time (ISO 8601)")
    checkout_request_id: Optional[str] = None
    receipt_number: Optional[str] = None


class TransactionListResponse(BaseModel):
    """Response schema for the ledger listing."""

    transactions: List[TransactionResponse]


class DailyStatsResponse(CamelModel):
    """Response schema for today's totals."""

    total_orders: int = Field(..., description="Records since local midnight")
    total_revenue: float = Field(..., description="Sum of completed amounts today")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
