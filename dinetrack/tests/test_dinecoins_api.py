"""
DineCoins API tests.

Supervisor adjustments and role/ownership checks on balance views.
"""

import pytest

from dinetrack.app.core.jwt import create_access_token
from dinetrack.app.models.enums import Role

from factories import auth_headers, credit


@pytest.mark.asyncio
async def test_supervisor_credits_user(client, supervisor, customer):
    response = await client.post(
        "/v1/dinecoins/adjustments",
        json={"target_type": "user", "target_id": customer.id, "amount": 40, "reason": "Loyalty"},
        headers=auth_headers(supervisor.id, Role.SUPERVISOR),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["entry_type"] == "credit"
    assert data["balance_after"] == 40
    assert data["actor_id"] == supervisor.id


@pytest.mark.asyncio
async def test_supervisor_rewards_establishment(client, supervisor, establishment):
    response = await client.post(
        "/v1/dinecoins/adjustments",
        json={"target_type": "establishment", "target_id": establishment.id, "amount": 12.5},
        headers=auth_headers(supervisor.id, Role.SUPERVISOR),
    )

    assert response.status_code == 201
    assert response.json()["target_type"] == "establishment"


@pytest.mark.asyncio
@pytest.mark.parametrize("role", [Role.CUSTOMER, Role.OPERATOR, Role.STAFF, Role.KITCHEN])
async def test_non_supervisor_cannot_adjust(client, customer, role):
    response = await client.post(
        "/v1/dinecoins/adjustments",
        json={"target_type": "user", "target_id": customer.id, "amount": 40},
        headers=auth_headers(customer.id, role),
    )

    assert response.status_code == 403
    assert response.json()["kind"] == "permission_denied"


@pytest.mark.asyncio
async def test_token_without_role_is_customer(client, customer):
    token = create_access_token(data={"sub": customer.id})

    response = await client.post(
        "/v1/dinecoins/adjustments",
        json={"target_type": "user", "target_id": customer.id, "amount": 1},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_invalid_token_rejected(client, customer):
    response = await client.get(
        f"/v1/dinecoins/user/{customer.id}/balance",
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_adjust_unknown_target(client, supervisor):
    response = await client.post(
        "/v1/dinecoins/adjustments",
        json={"target_type": "user", "target_id": "ghost", "amount": 5},
        headers=auth_headers(supervisor.id, Role.SUPERVISOR),
    )

    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


@pytest.mark.asyncio
async def test_overdraw_via_api(client, supervisor, customer, session_factory):
    await credit(session_factory, customer.id, 3)

    response = await client.post(
        "/v1/dinecoins/adjustments",
        json={"target_type": "user", "target_id": customer.id, "amount": -5},
        headers=auth_headers(supervisor.id, Role.SUPERVISOR),
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_BALANCE_001"


@pytest.mark.asyncio
async def test_user_reads_own_balance(client, customer, session_factory):
    await credit(session_factory, customer.id, 7)

    response = await client.get(f"/v1/dinecoins/user/{customer.id}/balance", headers=auth_headers(customer.id))

    assert response.status_code == 200
    assert response.json() == {
        "target_type": "user",
        "target_id": customer.id,
        "cached_balance": 7,
        "ledger_balance": 7,
        "consistent": True,
    }


@pytest.mark.asyncio
async def test_user_cannot_read_other_balance(client, customer, other_customer):
    response = await client.get(
        f"/v1/dinecoins/user/{other_customer.id}/balance", headers=auth_headers(customer.id)
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_supervisor_lists_entries(client, supervisor, customer, session_factory):
    await credit(session_factory, customer.id, 7)

    response = await client.get(
        f"/v1/dinecoins/user/{customer.id}/entries",
        headers=auth_headers(supervisor.id, Role.SUPERVISOR),
    )

    assert response.status_code == 200
    entries = response.json()["entries"]
    assert len(entries) == 1
    assert entries[0]["amount"] == 7


@pytest.mark.asyncio
async def test_unknown_target_type_path(client, supervisor):
    response = await client.get(
        "/v1/dinecoins/wallet/abc/balance",
        headers=auth_headers(supervisor.id, Role.SUPERVISOR),
    )

    assert response.status_code == 400
    assert response.json()["kind"] == "invalid_argument"
