"""
FastAPI Application Entry Point.

This is the main application file for the DineTrack Backend.
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from dinetrack.app.core.config import settings
from dinetrack.app.api.v1.router import router as api_v1_router
from dinetrack.app.db.session import engine, Base
from dinetrack.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from dinetrack.app.core.observability import ObservabilityMiddleware, configure_logging
from dinetrack.app.core.redis_client import create_redis_client
from dinetrack.app.core.reliability import CircuitBreaker
from dinetrack.app.domain.payments.gateway import PayChanguGateway, PaymentGatewayError
from dinetrack.app.services.notification_service import RealtimeNotifier

# Import models to ensure they are registered with Base
from dinetrack.app.models.user import User
from dinetrack.app.models.establishment import Establishment
from dinetrack.app.models.menu_item import MenuItem
from dinetrack.app.models.ledger_entry import LedgerEntry
from dinetrack.app.models.order import Order, OrderItem
from dinetrack.app.models.payment import Payment
from dinetrack.app.models.reconciliation import PaymentReconciliationItem

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Opens the gateway HTTP client and the redis connection.
    3. Closes both on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    http_client = httpx.AsyncClient(timeout=settings.gateway_timeout_seconds)
    app.state.payment_gateway = PayChanguGateway(
        settings.paychangu_api_url,
        settings.paychangu_api_key,
        client=http_client,
        breaker=CircuitBreaker(
            failure_threshold=settings.gateway_failure_threshold,
            reset_timeout=settings.gateway_reset_timeout,
            counts_as_failure=lambda exc: isinstance(exc, PaymentGatewayError) and not exc.is_rejection,
        ),
    )

    redis = create_redis_client()
    app.state.notifier = RealtimeNotifier(redis)

    yield

    await app.state.payment_gateway.close()
    await redis.aclose()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Restaurant ordering backend: DineCoins ledger, orders and gateway payments",
    lifespan=lifespan,
)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.add_middleware(ObservabilityMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to DineTrack Backend API",
        "docs": "/docs",
        "health": "/health",
    }
