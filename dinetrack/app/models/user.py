"""
User database model.

Users are bootstrapped by the Identity Provider's signup trigger; this
service reads them and maintains their cached DineCoins balance.
"""

import uuid

from sqlalchemy import Column, String, Float, DateTime, Enum
from sqlalchemy.sql import func
from dinetrack.app.db.session import Base
from dinetrack.app.models.enums import Role


class User(Base):
    """
    User model.

    `dine_coins_balance` is a cached projection of the user's ledger entries.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=True)
    phone = Column(String(50), nullable=True)
    display_name = Column(String(255), nullable=True)

    role = Column(Enum(Role), default=Role.CUSTOMER, nullable=False)

    dine_coins_balance = Column(Float, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}')>"
