"""
DineCoins API Endpoints.

Supervisor adjustments and balance/ledger views.
"""

from fastapi import APIRouter, Depends, Path, Query, status

from dinetrack.app.core.caller import CallerContext
from dinetrack.app.core.dependencies import get_caller_context, get_ledger_engine
from dinetrack.app.core.guards import require_role, enforce_balance_access
from dinetrack.app.domain.ledger.ledger_engine import LedgerEngine, parse_target_type
from dinetrack.app.models.enums import Role
from dinetrack.app.schemas.ledger import (
    AdjustmentCreate, LedgerEntryResponse, BalanceResponse, LedgerEntryListResponse
)

router = APIRouter(prefix="/dinecoins", tags=["DineCoins"])


@router.post("/adjustments", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_adjustment(
    adjustment: AdjustmentCreate,
    caller: CallerContext = Depends(require_role([Role.SUPERVISOR])),
    ledger: LedgerEngine = Depends(get_ledger_engine)
):
    """
    Credit or debit a user's or establishment's DineCoins.
    """
    return await ledger.record_adjustment(
        adjustment.target_type,
        adjustment.target_id,
        adjustment.amount,
        actor_id=caller.caller_id,
        reason=adjustment.reason,
    )


@router.get("/{target_type}/{target_id}/balance", response_model=BalanceResponse)
async def get_balance(
    target_type: str = Path(..., description="user or establishment"),
    target_id: str = Path(...),
    caller: CallerContext = Depends(get_caller_context),
    ledger: LedgerEngine = Depends(get_ledger_engine)
):
    """Cached balance next to the ledger sum."""
    parsed = parse_target_type(target_type)
    enforce_balance_access(caller, parsed, target_id)

    check = await ledger.verify_balance(parsed, target_id)
    return BalanceResponse(target_type=parsed, target_id=target_id, **check)


@router.get("/{target_type}/{target_id}/entries", response_model=LedgerEntryListResponse)
async def list_entries(
    target_type: str = Path(..., description="user or establishment"),
    target_id: str = Path(...),
    limit: int = Query(50, ge=1, le=500),
    caller: CallerContext = Depends(get_caller_context),
    ledger: LedgerEngine = Depends(get_ledger_engine)
):
    """Ledger entries, most recent first."""
    parsed = parse_target_type(target_type)
    enforce_balance_access(caller, parsed, target_id)

    entries = await ledger.list_entries(parsed, target_id, limit=limit)
    return LedgerEntryListResponse(
        target_type=parsed,
        target_id=target_id,
        entries=[LedgerEntryResponse.model_validate(entry) for entry in entries],
    )
