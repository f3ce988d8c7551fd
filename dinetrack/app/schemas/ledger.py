"""
DineCoins Ledger Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from dinetrack.app.models.enums import TargetType, LedgerEntryType


class AdjustmentCreate(BaseModel):
    """Schema for a supervisor's manual adjustment. Positive credits, negative debits."""
    target_type: TargetType
    target_id: str = Field(..., min_length=1)
    amount: float
    reason: Optional[str] = Field(None, max_length=255)


class LedgerEntryResponse(BaseModel):
    """Schema for displaying a ledger entry."""
    id: str
    target_type: TargetType
    target_id: str
    amount: float
    entry_type: LedgerEntryType
    balance_after: float
    reason: Optional[str]
    actor_id: Optional[str]
    order_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class BalanceResponse(BaseModel):
    target_type: TargetType
    target_id: str
    cached_balance: float
    ledger_balance: float
    consistent: bool


class LedgerEntryListResponse(BaseModel):
    target_type: TargetType
    target_id: str
    entries: List[LedgerEntryResponse]
