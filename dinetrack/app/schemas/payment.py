"""
Payment Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from dinetrack.app.models.enums import PaymentStatus, OrderPaymentStatus


class InitiatePaymentRequest(BaseModel):
    """Schema for starting a gateway payment for an order."""
    order_id: str = Field(..., min_length=1)
    payer_customer_id: str = Field(..., min_length=1)
    payment_method: str = "mobile_money"
    phone_number: Optional[str] = None
    return_url: Optional[str] = None


class PaymentCreatedResponse(BaseModel):
    success: bool = True
    payment_id: str
    checkout_url: Optional[str]
    provider_payment_id: Optional[str]
    amount: float
    currency: str
    status: PaymentStatus
    order_number: str


class PaymentReplayResponse(BaseModel):
    """Returned when the idempotency key was already used."""
    success: bool = True
    message: str = "Payment already created"
    payment_id: str
    checkout_url: Optional[str]
    status: PaymentStatus


class PaymentOrderInfo(BaseModel):
    id: str
    order_number: str
    total_amount: float
    payment_status: OrderPaymentStatus


class PaymentStatusResponse(BaseModel):
    success: bool = True
    status: PaymentStatus
    provider_status: Optional[str] = None
    provider_payment_id: Optional[str]
    amount: float
    currency: str
    order: PaymentOrderInfo
    updated_at: Optional[datetime]
    checked_at: datetime
    from_provider: bool


class WebhookAckResponse(BaseModel):
    success: bool
    message: str
    payment_id: Optional[str] = None
    status: Optional[PaymentStatus] = None
