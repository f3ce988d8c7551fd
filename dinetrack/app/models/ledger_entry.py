"""
DineCoins ledger entry database model.

Append-only record of signed balance adjustments.
"""

import uuid

from sqlalchemy import Column, String, Float, DateTime, Enum, Index, event
from sqlalchemy.sql import func
from dinetrack.app.db.session import Base
from dinetrack.app.models.enums import TargetType, LedgerEntryType


class ImmutableLedgerError(Exception):
    """Raised when code tries to change or remove a ledger entry."""


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Immutable record of one DineCoins adjustment against a user or establishment.
    The sign of `amount` is the source of truth: positive credits, negative debits.
    Sum of entries for a target == the target's cached `dine_coins_balance`.
    NO updates or deletions allowed.
    """
    __tablename__ = "dinecoin_ledger"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Target (polymorphic: users or establishments)
    target_type = Column(Enum(TargetType), nullable=False)
    target_id = Column(String(36), nullable=False)

    # Financials
    amount = Column(Float, nullable=False)
    entry_type = Column(Enum(LedgerEntryType), nullable=False)
    balance_after = Column(Float, nullable=False)
    reason = Column(String(255), nullable=True)

    # Who authorized it (None for automated entries such as order debits)
    actor_id = Column(String(36), nullable=True, index=True)
    order_id = Column(String(36), nullable=True, index=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_ledger_target", "target_type", "target_id", "created_at"),
    )

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type='{self.entry_type.value}', amount={self.amount})>"


@event.listens_for(LedgerEntry, "before_update")
def _block_update(mapper, connection, target):
    raise ImmutableLedgerError(f"Ledger entry {target.id} is immutable")


@event.listens_for(LedgerEntry, "before_delete")
def _block_delete(mapper, connection, target):
    raise ImmutableLedgerError(f"Ledger entry {target.id} cannot be deleted")
