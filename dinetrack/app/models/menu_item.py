"""
Menu item (catalog) database model.

Catalog management lives elsewhere; orders only read price and availability.
"""

import uuid

from sqlalchemy import Column, String, Float, Boolean, ForeignKey, DateTime
from sqlalchemy.sql import func
from dinetrack.app.db.session import Base


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    establishment_id = Column(String(36), ForeignKey("establishments.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Float, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<MenuItem(id={self.id}, name='{self.name}', price={self.price})>"
