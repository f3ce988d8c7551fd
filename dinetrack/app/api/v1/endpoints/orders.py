"""
Order API Endpoints.
"""

from fastapi import APIRouter, Depends, status

from dinetrack.app.core.caller import CallerContext
from dinetrack.app.core.dependencies import get_caller_context, get_order_workflow
from dinetrack.app.domain.orders.order_workflow import OrderWorkflow
from dinetrack.app.schemas.order import (
    PlaceOrderRequest, PlaceOrderResponse, OrderSummary, OrderPaymentSummary
)

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", response_model=PlaceOrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    request: PlaceOrderRequest,
    caller: CallerContext = Depends(get_caller_context),
    workflow: OrderWorkflow = Depends(get_order_workflow)
):
    """
    Place an order for the calling customer.

    Prices come from the catalog; the declared total must match them.
    DineCoins spent are debited after the order is stored.
    """
    placed = await workflow.place_order(caller, request)
    order, payment = placed.order, placed.payment

    return PlaceOrderResponse(
        order=OrderSummary(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
            total=order.total_amount,
            created_at=order.created_at,
        ),
        payment=OrderPaymentSummary(
            id=payment.id,
            status=payment.status,
            method=payment.payment_method,
            amount=payment.amount,
            dine_coins_used=payment.dine_coins_used,
        ),
        items=placed.item_count,
    )
