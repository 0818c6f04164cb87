"""
Main FastAPI application.

Components are constructed once per application and kept on app.state:
- PaymentGatewayClient (config, token cache, executor)
- TransactionLedger (file or Redis store)
- CallbackReconciler
- HealthCheck

Anything passed to create_app() is used as-is; the rest is built during
startup from Settings. An invalid gateway configuration aborts startup.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import httpx
import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stk_gateway import __version__
from stk_gateway.config import Settings, get_settings
from stk_gateway.core.exceptions import ConfigError, GatewayError
from stk_gateway.core.ledger import (
    JsonFileLedgerStore,
    LedgerStore,
    RedisLedgerStore,
    TransactionLedger,
)
from stk_gateway.core.reconciliation import CallbackReconciler
from stk_gateway.integrations.daraja_client import PaymentGatewayClient
from stk_gateway.monitoring.health import HealthCheck
from stk_gateway.monitoring.logging import setup_logging

from .routes import monitoring_router, payment_router, transaction_router

logger = structlog.get_logger(__name__)


def build_ledger_store(settings: Settings) -> LedgerStore:
    """
    Ledger store selected by settings.

    Raises:
        ConfigError: If the Redis backend is selected without redis_url
    """
    if settings.ledger_backend == "redis":
        if not settings.redis_url:
            raise ConfigError("redis_url is required for the redis ledger backend")
        client = aioredis.from_url(
            settings.redis_url, encoding="utf-8", decode_responses=True
        )
        return RedisLedgerStore(client, key=settings.ledger_key)
    return JsonFileLedgerStore(settings.ledger_path)


def _wire_state(app: FastAPI) -> None:
    state = app.state
    if getattr(state, "reconciler", None) is None and state.ledger is not None:
        state.reconciler = CallbackReconciler(state.ledger)
    if getattr(state, "health_check", None) is None and state.ledger is not None:
        token_manager = state.gateway_client.token_manager if state.gateway_client else None
        state.health_check = HealthCheck(state.ledger, token_manager)


def create_app(
    settings: Optional[Settings] = None,
    gateway_client: Optional[PaymentGatewayClient] = None,
    ledger: Optional[TransactionLedger] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (defaults to environment settings)
        gateway_client: Pre-built gateway client
        ledger: Pre-built ledger

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        """Build missing components on startup; release them on shutdown."""
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
        )

        http_client: Optional[httpx.AsyncClient] = None
        owned_store: Optional[LedgerStore] = None

        if app.state.gateway_client is None:
            http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
            try:
                app.state.gateway_client = PaymentGatewayClient.from_settings(
                    settings, http_client
                )
            except ConfigError as e:
                await http_client.aclose()
                logger.error("gateway_configuration_invalid", error=e.message)
                raise

        if app.state.ledger is None:
            owned_store = build_ledger_store(settings)
            app.state.ledger = TransactionLedger(
                owned_store, capacity=settings.ledger_capacity
            )
        _wire_state(app)

        yield

        logger.info("application_shutdown")
        if http_client is not None:
            await http_client.aclose()
        if isinstance(owned_store, RedisLedgerStore):
            await owned_store.close()

    app = FastAPI(
        title="STK Push Gateway",
        description=(
            "M-Pesa STK push initiation with token caching, bounded retry, "
            "and callback reconciliation into a bounded transaction ledger."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.gateway_client = gateway_client
    app.state.ledger = ledger
    app.state.reconciler = None
    app.state.health_check = None
    _wire_state(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """
        Add request ID to all requests for tracing.

        Also adds timing information and structured logging context.
        """
        request_id = str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Reject malformed request bodies with HTTP 400."""
        details = [
            {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
            for err in exc.errors()
        ]
        logger.warning("request_validation_failed", details=details)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request data", "details": details},
        )

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError) -> JSONResponse:
        """Errors that escaped a route's own mapping."""
        logger.error(
            "gateway_error",
            error_code=exc.error_code,
            error=exc.message,
            path=request.url.path,
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    app.include_router(payment_router)
    app.include_router(transaction_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "stk_gateway.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
