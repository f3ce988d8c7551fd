"""
Balance Ledger Engine (Domain Logic).

Records signed DineCoins adjustments and keeps the target's cached balance
in step with the ledger. Authorization is the caller's job: supervisors use
it for manual rewards, the order workflow for automated debits.
"""

import asyncio
import logging
import math
from typing import Optional, List

from sqlalchemy import select, update, func
from sqlalchemy.exc import OperationalError, DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dinetrack.app.core.exceptions import (
    InvalidArgumentError,
    ResourceNotFoundError,
    InsufficientBalanceError,
    TransientStoreError,
)
from dinetrack.app.models.enums import TargetType, LedgerEntryType
from dinetrack.app.models.establishment import Establishment
from dinetrack.app.models.ledger_entry import LedgerEntry
from dinetrack.app.models.user import User

logger = logging.getLogger("dinetrack.ledger")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}

TARGET_MODELS = {
    TargetType.USER: User,
    TargetType.ESTABLISHMENT: Establishment,
}


def is_retryable(exc: DBAPIError) -> bool:
    """True for lock/serialization conflicts worth retrying."""
    if isinstance(exc, OperationalError):
        return True
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code in RETRYABLE_SQLSTATES


def parse_target_type(value) -> TargetType:
    try:
        return TargetType(value)
    except ValueError:
        raise InvalidArgumentError(
            f"Invalid target type '{value}'",
            details={"allowed": [t.value for t in TargetType]}
        )


class LedgerEngine:
    """
    Append-only ledger plus cached balance, mutated in one transaction.

    Args:
        session_factory: async_sessionmaker the engine opens transactions from
        max_retries: attempts before a conflicting transaction is surfaced
        retry_backoff: seconds of linear backoff between attempts
        allow_negative_balance: when False, debits may not overdraw the cached balance
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        max_retries: int = 5,
        retry_backoff: float = 0.05,
        allow_negative_balance: bool = False,
    ):
        self.session_factory = session_factory
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.allow_negative_balance = allow_negative_balance

    async def record_adjustment(
        self,
        target_type,
        target_id: str,
        amount: float,
        actor_id: Optional[str],
        reason: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Record one signed adjustment and apply it to the target's balance.

        Flow (single transaction, retried on conflict):
        1. Lock the target row and read its current balance
        2. Apply `balance + amount` as a guarded SQL update
        3. Insert the immutable LedgerEntry carrying `balance_after`

        Args:
            target_type: TargetType (or its string value)
            target_id: ID of the user or establishment
            amount: Signed amount; >= 0 is a credit, < 0 a debit
            actor_id: Caller who authorized it (None for automated entries)
            reason: Optional free text
            order_id: Order the adjustment belongs to, if any

        Returns:
            The created LedgerEntry

        Raises:
            InvalidArgumentError: unknown target type or non-finite amount
            ResourceNotFoundError: target does not exist (nothing recorded)
            InsufficientBalanceError: debit would overdraw and the policy forbids it
            TransientStoreError: conflicts persisted after all retries
        """
        target_type = parse_target_type(target_type)
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            raise InvalidArgumentError("Amount must be a number", details={"amount": amount})
        if not math.isfinite(amount):
            raise InvalidArgumentError("Amount must be a finite number", details={"amount": amount})

        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        entry = await self._apply(session, target_type, target_id, amount, actor_id, reason, order_id)
                    logger.info(
                        "Ledger %s of %s recorded for %s %s (balance %s)",
                        entry.entry_type.value, amount, target_type.value, target_id, entry.balance_after
                    )
                    return entry
            except DBAPIError as exc:
                if not is_retryable(exc):
                    raise
                logger.warning(
                    "Ledger conflict on %s %s (attempt %d/%d): %s",
                    target_type.value, target_id, attempt, self.max_retries, exc.__class__.__name__
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_backoff * attempt)

        raise TransientStoreError(attempts=self.max_retries)

    async def apply_in_transaction(
        self,
        session: AsyncSession,
        target_type,
        target_id: str,
        amount: float,
        actor_id: Optional[str],
        reason: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Apply an adjustment inside the caller's open transaction.

        Same lock, guard and entry as `record_adjustment`, but the caller
        owns commit, rollback and retries.
        """
        return await self._apply(session, parse_target_type(target_type), target_id, amount, actor_id, reason, order_id)

    async def _apply(
        self,
        session: AsyncSession,
        target_type: TargetType,
        target_id: str,
        amount: float,
        actor_id: Optional[str],
        reason: Optional[str],
        order_id: Optional[str],
    ) -> LedgerEntry:
        model = TARGET_MODELS[target_type]

        # 1. Lock target and read the balance inside the transaction
        result = await session.execute(
            select(model.dine_coins_balance).where(model.id == target_id).with_for_update()
        )
        previous = result.scalar_one_or_none()
        if previous is None:
            raise ResourceNotFoundError(target_type.value.capitalize(), target_id)

        # 2. Increment in SQL so the new value never comes from a stale read
        stmt = update(model).where(model.id == target_id)
        if amount < 0 and not self.allow_negative_balance:
            stmt = stmt.where(model.dine_coins_balance + amount >= 0)
        result = await session.execute(
            stmt.values(dine_coins_balance=model.dine_coins_balance + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InsufficientBalanceError(balance=previous, requested=-amount)

        balance_after = (await session.execute(
            select(model.dine_coins_balance).where(model.id == target_id)
        )).scalar_one()

        # 3. Append the ledger entry
        entry = LedgerEntry(
            target_type=target_type,
            target_id=target_id,
            amount=amount,
            entry_type=LedgerEntryType.from_amount(amount),
            balance_after=balance_after,
            reason=reason,
            actor_id=actor_id,
            order_id=order_id,
        )
        session.add(entry)
        await session.flush()
        await session.refresh(entry)
        return entry

    async def get_ledger_balance(self, target_type, target_id: str) -> float:
        """Sum of all ledger entries for the target (0 when it has none)."""
        target_type = parse_target_type(target_type)
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(LedgerEntry.amount), 0.0)).where(
                    LedgerEntry.target_type == target_type,
                    LedgerEntry.target_id == target_id
                )
            )
            return float(result.scalar_one())

    async def get_cached_balance(self, target_type, target_id: str) -> float:
        """The target's cached balance field."""
        target_type = parse_target_type(target_type)
        model = TARGET_MODELS[target_type]
        async with self.session_factory() as session:
            result = await session.execute(
                select(model.dine_coins_balance).where(model.id == target_id)
            )
            balance = result.scalar_one_or_none()
        if balance is None:
            raise ResourceNotFoundError(target_type.value.capitalize(), target_id)
        return float(balance)

    async def verify_balance(self, target_type, target_id: str, tolerance: float = 1e-6) -> dict:
        """
        Compare the cached balance with the ledger sum.

        Used by operational tooling to spot targets whose projection diverged
        (e.g. balances seeded outside the ledger).
        """
        cached = await self.get_cached_balance(target_type, target_id)
        ledger = await self.get_ledger_balance(target_type, target_id)
        return {
            "cached_balance": cached,
            "ledger_balance": ledger,
            "consistent": abs(cached - ledger) <= tolerance,
        }

    async def list_entries(self, target_type, target_id: str, limit: int = 50) -> List[LedgerEntry]:
        """Ledger entries for the target, most recent first."""
        target_type = parse_target_type(target_type)
        async with self.session_factory() as session:
            result = await session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.target_type == target_type, LedgerEntry.target_id == target_id)
                .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
                .limit(limit)
            )
            return list(result.scalars().all())
