"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from dinetrack.app.api.v1.endpoints import dinecoins, orders, payments

router = APIRouter()

# DineCoins balance ledger
router.include_router(dinecoins.router)

# Order placement
router.include_router(orders.router)

# Gateway payments and webhook
router.include_router(payments.router)
