"""
Payment database model.
"""

import uuid

from sqlalchemy import Column, String, Float, ForeignKey, DateTime, Enum, JSON, Text
from sqlalchemy.sql import func
from dinetrack.app.db.session import Base
from dinetrack.app.models.enums import PaymentStatus, PaymentMethod


class Payment(Base):
    """
    Payment attempt for an order.

    Lifecycle: PENDING -> PROCESSING -> COMPLETED | FAILED (terminal, sticky).
    `idempotency_key` is unique: a retried creation returns the existing row.
    `meta_data` is append-only: provider responses and webhook deliveries are
    added under new keys or appended to `provider_events`.
    """
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    payer_customer_id = Column(String(36), nullable=True)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="MWK", nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    dine_coins_used = Column(Float, default=0, nullable=False)

    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)
    idempotency_key = Column(String(128), unique=True, nullable=False)

    # Provider linkage
    provider_payment_id = Column(String(128), nullable=True, index=True)
    checkout_url = Column(Text, nullable=True)
    meta_data = Column("metadata", JSON, default=dict, nullable=False)

    webhook_received_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Payment(id={self.id}, status='{self.status.value}', amount={self.amount})>"
