"""
Order and OrderItem database models.
"""

import uuid

from sqlalchemy import Column, String, Float, Integer, ForeignKey, DateTime, Enum, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dinetrack.app.db.session import Base
from dinetrack.app.models.enums import OrderStatus, OrderPaymentStatus


class Order(Base):
    """
    Order model.

    `total_amount` equals the sum of the items' line totals at creation time.
    The order owns its items (cascade delete).
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    establishment_id = Column(String(36), ForeignKey("establishments.id"), nullable=False, index=True)
    table_id = Column(String(64), nullable=False)
    customer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    group_session_id = Column(String(64), nullable=True)

    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    payment_status = Column(Enum(OrderPaymentStatus), default=OrderPaymentStatus.UNPAID, nullable=False)

    total_amount = Column(Float, nullable=False)
    dine_coins_used = Column(Float, default=0, nullable=False)
    special_instructions = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    @property
    def order_number(self) -> str:
        return self.id[:8].upper()

    def __repr__(self):
        return f"<Order(id={self.id}, status='{self.status.value}', total={self.total_amount})>"


class OrderItem(Base):
    """
    Order line. `unit_price` is a snapshot of the catalog price at order time.
    """
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    menu_item_id = Column(String(36), ForeignKey("menu_items.id"), nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    line_total = Column(Float, nullable=False)
    special_instructions = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem(order={self.order_id}, menu_item={self.menu_item_id}, qty={self.quantity})>"
