"""
Payment API Endpoints.

Gateway payment creation, status polling and the provider webhook.
"""

from typing import Optional, Union

from fastapi import APIRouter, Depends, Header, Path, Request, status
from fastapi.responses import JSONResponse

from dinetrack.app.core.caller import CallerContext
from dinetrack.app.core.dependencies import get_caller_context, get_payment_reconciler
from dinetrack.app.domain.payments.reconciliation import PaymentReconciler
from dinetrack.app.domain.payments.signature import SIGNATURE_HEADER
from dinetrack.app.schemas.payment import (
    InitiatePaymentRequest,
    PaymentCreatedResponse,
    PaymentReplayResponse,
    PaymentStatusResponse,
    PaymentOrderInfo,
    WebhookAckResponse,
)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("", response_model=Union[PaymentCreatedResponse, PaymentReplayResponse])
async def initiate_payment(
    request: InitiatePaymentRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    caller: CallerContext = Depends(get_caller_context),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    """
    Create a gateway payment for the amount still due on an order.

    Repeating the call with the same Idempotency-Key returns the stored payment.
    """
    result = await reconciler.initiate_payment(caller, request, idempotency_key)
    payment = result.payment

    if result.replayed:
        return PaymentReplayResponse(
            payment_id=payment.id,
            checkout_url=payment.checkout_url,
            status=payment.status,
        )

    return PaymentCreatedResponse(
        payment_id=payment.id,
        checkout_url=payment.checkout_url,
        provider_payment_id=payment.provider_payment_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        order_number=result.order_number,
    )


@router.get("/{payment_id}/status", response_model=PaymentStatusResponse)
async def get_payment_status(
    payment_id: str = Path(...),
    caller: CallerContext = Depends(get_caller_context),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    """Current payment status, refreshed from the provider while not final."""
    view = await reconciler.check_status(caller, payment_id)
    payment, order = view.payment, view.order

    return PaymentStatusResponse(
        status=payment.status,
        provider_status=view.provider_status,
        provider_payment_id=payment.provider_payment_id,
        amount=payment.amount,
        currency=payment.currency,
        order=PaymentOrderInfo(
            id=order.id,
            order_number=order.order_number,
            total_amount=order.total_amount,
            payment_status=order.payment_status,
        ),
        updated_at=payment.updated_at,
        checked_at=view.checked_at,
        from_provider=view.from_provider,
    )


@router.post("/webhook", response_model=WebhookAckResponse)
async def payment_webhook(
    request: Request,
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    """
    PayChangu delivery endpoint.

    The signature covers the raw body, so it is read before parsing.
    Unmatched deliveries answer 404 after being queued for review.
    """
    body = await request.body()
    result = await reconciler.handle_webhook(body, request.headers.get(SIGNATURE_HEADER))

    if result.outcome == "unmatched":
        ack = WebhookAckResponse(success=False, message="Payment not found, queued for reconciliation")
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=ack.model_dump(mode="json"))

    message = "Already processed" if result.outcome == "already_processed" else "Webhook processed"
    return WebhookAckResponse(success=True, message=message, payment_id=result.payment_id, status=result.status)
