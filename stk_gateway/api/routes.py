"""
API routes for STK push initiation, callbacks and ledger queries.
"""
import json
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from stk_gateway.core.exceptions import (
    AuthError,
    CallbackParseError,
    GatewayBusinessError,
    PersistenceError,
    TransientNetworkError,
    ValidationError,
)
from stk_gateway.core.ledger import TransactionLedger
from stk_gateway.core.models import PaymentRequest
from stk_gateway.core.phone import mask_phone_number
from stk_gateway.core.reconciliation import CallbackReconciler
from stk_gateway.integrations.daraja_client import PaymentGatewayClient
from stk_gateway.monitoring.health import HealthCheck

from .schemas import (
    CallbackAckResponse,
    DailyStatsResponse,
    HealthCheckResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    TransactionListResponse,
    TransactionResponse,
)

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/api/payments", tags=["payments"])
transaction_router = APIRouter(prefix="/api/transactions", tags=["transactions"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_gateway_client(request: Request) -> PaymentGatewayClient:
    """Gateway client built at startup."""
    return request.app.state.gateway_client


def get_ledger(request: Request) -> TransactionLedger:
    """Ledger built at startup."""
    return request.app.state.ledger


def get_reconciler(request: Request) -> CallbackReconciler:
    """Reconciler built at startup."""
    return request.app.state.reconciler


def get_health_check(request: Request) -> HealthCheck:
    """Health check built at startup."""
    return request.app.state.health_check


@payment_router.post(
    "/initiate",
    response_model=InitiatePaymentResponse,
    summary="Initiate an STK push",
    description="Prompt the payer's phone to authorize a payment",
)
async def initiate_payment(
    body: InitiatePaymentRequest,
    client: PaymentGatewayClient = Depends(get_gateway_client),
) -> Dict[str, Any]:
    """
    Initiate an STK push.

    A successful response only means the push was queued; the outcome
    arrives through the callback webhook.
    """
    logger.info(
        "api_initiate_payment_request",
        phone_number=mask_phone_number(body.phone_number),
        amount=body.amount,
        reference=body.account_reference,
    )

    try:
        ack = await client.initiate_payment(
            PaymentRequest(
                phone_number=body.phone_number,
                amount=body.amount,
                account_reference=body.account_reference,
                transaction_desc=body.transaction_desc or "Payment",
            )
        )
    except ValidationError as e:
        logger.warning("api_initiate_payment_validation_error", error=e.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.user_message)
    except GatewayBusinessError as e:
        logger.warning(
            "api_initiate_payment_rejected",
            response_code=e.response_code,
            error=e.message,
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.user_message)
    except (AuthError, TransientNetworkError) as e:
        logger.error(
            "api_initiate_payment_unavailable",
            error_type=type(e).__name__,
            status_code=e.status_code,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.user_message
        )

    return ack.model_dump(by_alias=True)


@payment_router.post(
    "/callback",
    response_model=CallbackAckResponse,
    summary="STK callback webhook",
    description="Receives the payment outcome from the gateway",
)
async def payment_callback(
    request: Request,
    reconciler: CallbackReconciler = Depends(get_reconciler),
) -> Any:
    """
    Reconcile a gateway callback into the ledger.

    Malformed bodies and storage failures are answered with HTTP 500 and an
    error body; they never crash the handler.
    """
    try:
        raw = await request.body()
        try:
            body = json.loads(raw)
        except ValueError:
            raise CallbackParseError("Callback body is not valid JSON")
        await reconciler.reconcile(body)
    except (CallbackParseError, PersistenceError) as e:
        logger.error(
            "callback_processing_failed",
            error_type=type(e).__name__,
            error=e.message,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to process callback"},
        )

    return {"received": True}


@transaction_router.get(
    "",
    response_model=TransactionListResponse,
    summary="List transactions",
    description="Ledger records, newest first",
)
async def list_transactions(
    ledger: TransactionLedger = Depends(get_ledger),
) -> TransactionListResponse:
    """List ledger records."""
    try:
        records = await ledger.list()
    except PersistenceError as e:
        logger.error("api_list_transactions_error", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.user_message
        )

    return TransactionListResponse(
        transactions=[
            TransactionResponse(
                id=r.id,
                phone_number=r.phone_number,
                amount=r.amount,
                status=r.status.value,
                timestamp=r.timestamp.isoformat(),
                checkout_request_id=r.checkout_request_id,
                receipt_number=r.receipt_number,
            )
            for r in records
        ]
    )


@transaction_router.get(
    "/stats",
    response_model=DailyStatsResponse,
    summary="Today's totals",
    description="Order count and completed revenue since local midnight",
)
async def daily_stats(
    ledger: TransactionLedger = Depends(get_ledger),
) -> DailyStatsResponse:
    """Today's order count and revenue."""
    try:
        stats = await ledger.daily_stats()
    except PersistenceError as e:
        logger.error("api_daily_stats_error", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.user_message
        )

    return DailyStatsResponse(total_orders=stats.count, total_revenue=stats.revenue)


@transaction_router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Reset the ledger",
)
async def reset_transactions(
    ledger: TransactionLedger = Depends(get_ledger),
) -> Response:
    """Clear all ledger records."""
    try:
        await ledger.reset()
    except PersistenceError as e:
        logger.error("api_reset_transactions_error", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.user_message
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
)
async def health(
    health_check: HealthCheck = Depends(get_health_check),
) -> JSONResponse:
    """Overall health including ledger store readability."""
    result = await health_check.check_all()
    code = (
        status.HTTP_200_OK
        if result["status"] == "healthy"
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(status_code=code, content=result)


@monitoring_router.get("/health/live", summary="Liveness probe")
async def liveness() -> Dict[str, Any]:
    """Process is up."""
    return {"status": "alive"}


@monitoring_router.get("/metrics", summary="Prometheus metrics")
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
