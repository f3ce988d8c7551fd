"""
DineCoins Balance Verification Script.

Compares every cached DineCoins balance with its ledger sum:
1. Users
2. Establishments

Drift usually means a post-order debit failed (see the `dinetrack.orders`
log) or a balance was seeded outside the ledger. Nothing is repaired here.

Usage:
    python -m scripts.verify_balances
"""

import asyncio
import sys

from sqlalchemy import select

from dinetrack.app.db.session import AsyncSessionLocal, engine
from dinetrack.app.core.config import settings
from dinetrack.app.domain.ledger.ledger_engine import LedgerEngine, TARGET_MODELS


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ FAILURE: {msg}")


def success(msg):
    print(f"✅ {msg}")


async def verify_all(ledger: LedgerEngine) -> int:
    drifted = 0
    for target_type, model in TARGET_MODELS.items():
        print_step(target_type.value.upper(), f"Checking {model.__tablename__}...")

        async with AsyncSessionLocal() as session:
            ids = (await session.execute(select(model.id))).scalars().all()

        for target_id in ids:
            check = await ledger.verify_balance(target_type, target_id)
            if not check["consistent"]:
                drifted += 1
                fail(
                    f"{target_type.value} {target_id}: cached={check['cached_balance']} "
                    f"ledger={check['ledger_balance']}"
                )

        success(f"{len(ids)} {model.__tablename__} checked")
    return drifted


async def main():
    print("🚀 Starting DineCoins balance verification...")
    ledger = LedgerEngine(AsyncSessionLocal, max_retries=settings.ledger_max_retries)
    try:
        drifted = await verify_all(ledger)
    finally:
        await engine.dispose()

    if drifted:
        print(f"⚠️  {drifted} balance(s) drifted from the ledger")
        sys.exit(1)
    success("All balances match their ledgers")


if __name__ == "__main__":
    asyncio.run(main())
