"""
Establishment database model.
"""

import uuid

from sqlalchemy import Column, String, Float, Boolean, DateTime
from sqlalchemy.sql import func
from dinetrack.app.db.session import Base


class Establishment(Base):
    """
    Restaurant, bar or cafe onboarded onto the platform.

    Holds its own DineCoins balance (supervisor rewards).
    """
    __tablename__ = "establishments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)
    owner_id = Column(String(36), index=True, nullable=True)
    supervisor_approved = Column(Boolean, default=False, nullable=False)

    dine_coins_balance = Column(Float, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Establishment(id={self.id}, name='{self.name}')>"
