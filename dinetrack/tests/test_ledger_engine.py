"""
DineCoins ledger engine tests.

Balance arithmetic, negative-balance policy, immutability and concurrent writers.
"""

import asyncio
import math

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from dinetrack.app.core.exceptions import (
    InvalidArgumentError,
    ResourceNotFoundError,
    InsufficientBalanceError,
    TransientStoreError,
)
from dinetrack.app.domain.ledger.ledger_engine import LedgerEngine
from dinetrack.app.models.enums import TargetType, LedgerEntryType
from dinetrack.app.models.establishment import Establishment
from dinetrack.app.models.ledger_entry import LedgerEntry, ImmutableLedgerError
from dinetrack.app.models.user import User

from factories import create_user


@pytest.mark.asyncio
async def test_credit_updates_balance_and_records_entry(ledger, customer, supervisor):
    entry = await ledger.record_adjustment(
        TargetType.USER, customer.id, 25, actor_id=supervisor.id, reason="Welcome bonus"
    )

    assert entry.amount == 25
    assert entry.entry_type == LedgerEntryType.CREDIT
    assert entry.balance_after == 25
    assert entry.actor_id == supervisor.id
    assert entry.reason == "Welcome bonus"
    assert await ledger.get_cached_balance(TargetType.USER, customer.id) == 25


@pytest.mark.asyncio
async def test_debit_is_signed_negative(ledger, customer):
    await ledger.record_adjustment(TargetType.USER, customer.id, 30, actor_id=None)
    entry = await ledger.record_adjustment(TargetType.USER, customer.id, -12.5, actor_id=None)

    assert entry.entry_type == LedgerEntryType.DEBIT
    assert entry.amount == -12.5
    assert entry.balance_after == 17.5


@pytest.mark.asyncio
async def test_zero_amount_is_recorded(ledger, customer):
    entry = await ledger.record_adjustment(TargetType.USER, customer.id, 0, actor_id=None)

    assert entry.entry_type == LedgerEntryType.CREDIT
    assert len(await ledger.list_entries(TargetType.USER, customer.id)) == 1


@pytest.mark.asyncio
async def test_balance_matches_ledger_sum(ledger, customer):
    for amount in (10, -3, 7.25, -4.25, 100):
        await ledger.record_adjustment(TargetType.USER, customer.id, amount, actor_id=None)

    check = await ledger.verify_balance(TargetType.USER, customer.id)
    assert check["consistent"] is True
    assert check["cached_balance"] == pytest.approx(110)
    assert check["ledger_balance"] == pytest.approx(110)


@pytest.mark.asyncio
async def test_establishment_target(ledger, establishment, supervisor):
    entry = await ledger.record_adjustment(
        "establishment", establishment.id, 50, actor_id=supervisor.id, reason="Top venue"
    )

    assert entry.target_type == TargetType.ESTABLISHMENT
    assert await ledger.get_cached_balance(TargetType.ESTABLISHMENT, establishment.id) == 50


@pytest.mark.asyncio
async def test_unknown_target_records_nothing(ledger, session_factory):
    with pytest.raises(ResourceNotFoundError):
        await ledger.record_adjustment(TargetType.USER, "missing-user", 10, actor_id=None)

    async with session_factory() as session:
        count = (await session.execute(select(func.count(LedgerEntry.id)))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_invalid_target_type(ledger, customer):
    with pytest.raises(InvalidArgumentError):
        await ledger.record_adjustment("wallet", customer.id, 10, actor_id=None)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [math.nan, math.inf, "ten"])
async def test_non_finite_amount_rejected(ledger, customer, amount):
    with pytest.raises(InvalidArgumentError):
        await ledger.record_adjustment(TargetType.USER, customer.id, amount, actor_id=None)


@pytest.mark.asyncio
async def test_overdraw_rejected_and_balance_untouched(ledger, customer):
    await ledger.record_adjustment(TargetType.USER, customer.id, 5, actor_id=None)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await ledger.record_adjustment(TargetType.USER, customer.id, -6, actor_id=None)

    assert exc_info.value.details == {"balance": 5, "requested": 6}
    assert await ledger.get_cached_balance(TargetType.USER, customer.id) == 5
    assert len(await ledger.list_entries(TargetType.USER, customer.id)) == 1


@pytest.mark.asyncio
async def test_negative_balance_allowed_by_policy(session_factory, customer):
    engine = LedgerEngine(session_factory, allow_negative_balance=True)

    entry = await engine.record_adjustment(TargetType.USER, customer.id, -8, actor_id=None)

    assert entry.balance_after == -8
    assert (await engine.verify_balance(TargetType.USER, customer.id))["consistent"] is True


@pytest.mark.asyncio
async def test_list_entries_newest_first(ledger, customer):
    for amount in (1, 2, 3):
        await ledger.record_adjustment(TargetType.USER, customer.id, amount, actor_id=None)
        await asyncio.sleep(1.1)  # created_at has second resolution on sqlite

    entries = await ledger.list_entries(TargetType.USER, customer.id, limit=2)

    assert [e.amount for e in entries] == [3, 2]


@pytest.mark.asyncio
async def test_seeded_balance_reported_inconsistent(ledger, session_factory):
    user = await create_user(session_factory, dine_coins_balance=40)

    check = await ledger.verify_balance(TargetType.USER, user.id)

    assert check == {"cached_balance": 40, "ledger_balance": 0, "consistent": False}


@pytest.mark.asyncio
async def test_ledger_entries_are_immutable(ledger, customer, session_factory):
    entry = await ledger.record_adjustment(TargetType.USER, customer.id, 10, actor_id=None)

    async with session_factory() as session:
        stored = await session.get(LedgerEntry, entry.id)
        stored.amount = 1000
        with pytest.raises(ImmutableLedgerError):
            await session.flush()

    async with session_factory() as session:
        stored = await session.get(LedgerEntry, entry.id)
        await session.delete(stored)
        with pytest.raises(ImmutableLedgerError):
            await session.flush()


@pytest.mark.asyncio
async def test_retry_exhaustion_raises_transient_error(ledger, customer, mocker):
    conflict = OperationalError("UPDATE users", {}, Exception("database is locked"))
    apply = mocker.patch.object(LedgerEngine, "_apply", side_effect=conflict)

    with pytest.raises(TransientStoreError) as exc_info:
        await ledger.record_adjustment(TargetType.USER, customer.id, 10, actor_id=None)

    assert apply.call_count == 3
    assert exc_info.value.details["retryable"] is True


@pytest.mark.asyncio
async def test_retry_recovers_after_conflict(ledger, customer, mocker):
    real_apply = LedgerEngine._apply
    calls = {"n": 0}

    async def flaky_apply(self, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("UPDATE users", {}, Exception("database is locked"))
        return await real_apply(self, *args, **kwargs)

    mocker.patch.object(LedgerEngine, "_apply", flaky_apply)

    entry = await ledger.record_adjustment(TargetType.USER, customer.id, 10, actor_id=None)

    assert calls["n"] == 2
    assert entry.balance_after == 10


@pytest.mark.asyncio
async def test_concurrent_adjustments_lose_no_update(file_session_factory):
    user = await create_user(file_session_factory)
    engine = LedgerEngine(file_session_factory, max_retries=20, retry_backoff=0.01)
    await engine.record_adjustment(TargetType.USER, user.id, 100, actor_id=None)

    await asyncio.gather(*[
        engine.record_adjustment(TargetType.USER, user.id, amount, actor_id=None)
        for amount in [-1] * 10 + [2] * 10
    ])

    check = await engine.verify_balance(TargetType.USER, user.id)
    assert check["cached_balance"] == pytest.approx(110)
    assert check["consistent"] is True
    assert len(await engine.list_entries(TargetType.USER, user.id, limit=100)) == 21


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(file_session_factory):
    user = await create_user(file_session_factory)
    engine = LedgerEngine(file_session_factory, max_retries=20, retry_backoff=0.01)
    await engine.record_adjustment(TargetType.USER, user.id, 5, actor_id=None)

    results = await asyncio.gather(*[
        engine.record_adjustment(TargetType.USER, user.id, -1, actor_id=None)
        for _ in range(10)
    ], return_exceptions=True)

    succeeded = [r for r in results if isinstance(r, LedgerEntry)]
    refused = [r for r in results if isinstance(r, InsufficientBalanceError)]
    assert len(succeeded) == 5
    assert len(refused) == 5

    async with file_session_factory() as session:
        balance = (await session.execute(
            select(User.dine_coins_balance).where(User.id == user.id)
        )).scalar_one()
    assert balance == 0
    assert (await engine.verify_balance(TargetType.USER, user.id))["consistent"] is True


@pytest.mark.asyncio
async def test_establishment_balance_is_independent(ledger, customer, establishment, session_factory):
    await ledger.record_adjustment(TargetType.USER, customer.id, 10, actor_id=None)
    await ledger.record_adjustment(TargetType.ESTABLISHMENT, establishment.id, 3, actor_id=None)

    async with session_factory() as session:
        venue = await session.get(Establishment, establishment.id)
    assert venue.dine_coins_balance == 3
    assert await ledger.get_ledger_balance(TargetType.USER, customer.id) == 10
