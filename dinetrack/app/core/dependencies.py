"""
Request dependencies for FastAPI.

Resolves the caller identity from the Identity Provider's token and wires
the domain components with the collaborators owned by the application
(session factory, payment gateway, realtime notifier).
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import async_sessionmaker

from dinetrack.app.core.caller import CallerContext
from dinetrack.app.core.config import settings
from dinetrack.app.core.exceptions import UnauthenticatedError, PermissionDeniedError
from dinetrack.app.core.jwt import decode_access_token
from dinetrack.app.db.session import get_session_factory
from dinetrack.app.domain.ledger.ledger_engine import LedgerEngine
from dinetrack.app.domain.orders.order_workflow import OrderWorkflow
from dinetrack.app.domain.payments.gateway import PayChanguGateway
from dinetrack.app.domain.payments.reconciliation import PaymentReconciler
from dinetrack.app.models.enums import Role
from dinetrack.app.services.notification_service import RealtimeNotifier

# HTTP Bearer security scheme (missing header handled as Unauthenticated below)
security = HTTPBearer(auto_error=False)


async def get_caller_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> CallerContext:
    """
    Resolve the caller from the bearer token.

    The role claim is trusted verbatim; a token without one is a customer.

    Raises:
        UnauthenticatedError: token missing, invalid or without subject
        PermissionDeniedError: role claim is not a known role
    """
    if credentials is None:
        raise UnauthenticatedError("Login required")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise UnauthenticatedError("Could not validate credentials")

    caller_id = payload.get("sub")
    if not caller_id:
        raise UnauthenticatedError("Invalid token payload")

    try:
        role = Role(payload.get("role") or Role.CUSTOMER.value)
    except ValueError:
        raise PermissionDeniedError("Invalid role in token")

    return CallerContext(caller_id=str(caller_id), role=role)


def get_payment_gateway(request: Request) -> PayChanguGateway:
    """Gateway client created in the application lifespan."""
    return request.app.state.payment_gateway


def get_notifier(request: Request) -> RealtimeNotifier:
    """Realtime notifier created in the application lifespan."""
    return request.app.state.notifier


def get_ledger_engine(
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> LedgerEngine:
    return LedgerEngine(
        session_factory,
        max_retries=settings.ledger_max_retries,
        retry_backoff=settings.ledger_retry_backoff,
        allow_negative_balance=settings.allow_negative_balance,
    )


def get_order_workflow(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    ledger: LedgerEngine = Depends(get_ledger_engine)
) -> OrderWorkflow:
    return OrderWorkflow(session_factory, ledger, tolerance=settings.total_tolerance)


def get_payment_reconciler(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    gateway: PayChanguGateway = Depends(get_payment_gateway),
    notifier: RealtimeNotifier = Depends(get_notifier)
) -> PaymentReconciler:
    return PaymentReconciler(
        session_factory,
        gateway,
        notifier,
        currency=settings.default_currency,
        callback_url=settings.payment_callback_url,
        public_app_url=settings.public_app_url,
        webhook_secret=settings.paychangu_webhook_secret,
        allow_unsigned_webhooks=settings.webhook_allow_unsigned,
    )
