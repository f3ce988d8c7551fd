"""
Order Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from dinetrack.app.models.enums import OrderStatus, OrderPaymentStatus, PaymentMethod, PaymentStatus


class OrderItemRequest(BaseModel):
    """One requested line. Quantity is checked by the workflow so every bad line is reported."""
    menu_item_id: str = Field(..., min_length=1)
    quantity: int
    special_instructions: Optional[str] = None
    unit_price: Optional[float] = None  # client hint, never trusted


class PlaceOrderRequest(BaseModel):
    """Schema for placing an order."""
    establishment_id: str = Field(..., min_length=1)
    table_id: str = Field(..., min_length=1)
    items: List[OrderItemRequest] = Field(..., min_length=1)
    total_amount: float
    payment_method: PaymentMethod = PaymentMethod.CASH
    dine_coins_used: float = Field(0, ge=0)
    special_instructions: Optional[str] = None
    group_session_id: Optional[str] = None


class OrderSummary(BaseModel):
    id: str
    order_number: str
    status: OrderStatus
    payment_status: OrderPaymentStatus
    total: float
    created_at: Optional[datetime]


class OrderPaymentSummary(BaseModel):
    id: str
    status: PaymentStatus
    method: PaymentMethod
    amount: float
    dine_coins_used: float


class PlaceOrderResponse(BaseModel):
    """Response for a placed order."""
    success: bool = True
    message: str = "Order processed successfully!"
    order: OrderSummary
    payment: OrderPaymentSummary
    items: int
