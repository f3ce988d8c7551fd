"""
Payment Reconciliation Queue model.

Stores provider deliveries that could not be applied automatically
(unknown provider payment id, success reported for a failed payment)
for manual reconciliation.
"""

import uuid

from sqlalchemy import Column, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func
from dinetrack.app.db.session import Base
from dinetrack.app.models.enums import ReconciliationStatus


class PaymentReconciliationItem(Base):
    __tablename__ = "payment_reconciliation_queue"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    provider_payment_id = Column(String(128), nullable=True, index=True)
    payment_id = Column(String(36), nullable=True, index=True)  # set when a payment matched
    reason = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)  # raw provider delivery

    status = Column(Enum(ReconciliationStatus), default=ReconciliationStatus.PENDING_REVIEW, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<PaymentReconciliationItem(id={self.id}, provider_id='{self.provider_payment_id}', status='{self.status}')>"
