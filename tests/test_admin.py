# tests/test_admin.py
import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from ballotledger.errors import PermissionDeniedError, StateError
from ballotledger.ledger import LedgerCapability
from ballotledger.main import create_app
from ballotledger.security import create_access_token
from conftest import ADMIN, STRANGER, VOTER_2


def _create(coordinator, clock, requester):
    return coordinator.create_election(
        requester, "Board", clock(), clock() + timedelta(hours=1), clock() + timedelta(hours=2),
    )


def test_owner_is_admin(coordinator):
    assert asyncio.run(coordinator.is_admin(ADMIN))
    assert not asyncio.run(coordinator.is_admin(STRANGER))


def test_owner_adds_admin_who_can_create_elections(coordinator, clock):
    async def scenario():
        assert await coordinator.add_admin(VOTER_2, ADMIN)
        election = await _create(coordinator, clock, VOTER_2)
        assert election.admin == VOTER_2

    asyncio.run(scenario())


def test_non_owner_cannot_manage_admins(coordinator):
    async def scenario():
        await coordinator.add_admin(VOTER_2, ADMIN)
        with pytest.raises(PermissionDeniedError):
            await coordinator.add_admin(STRANGER, VOTER_2)
        with pytest.raises(PermissionDeniedError):
            await coordinator.remove_admin(VOTER_2, VOTER_2)
        assert not await coordinator.is_admin(STRANGER)

    asyncio.run(scenario())


def test_owner_removes_admin(coordinator, clock, ledger):
    async def scenario():
        await coordinator.add_admin(VOTER_2, ADMIN)
        assert not await coordinator.remove_admin(VOTER_2, ADMIN)
        with pytest.raises(PermissionDeniedError):
            await _create(coordinator, clock, VOTER_2)
        assert "CreateElection" not in ledger.calls

        with pytest.raises(StateError):
            await coordinator.remove_admin(ADMIN, ADMIN)

    asyncio.run(scenario())


def test_unregistered_address_cannot_create_election(coordinator, clock, ledger):
    with pytest.raises(PermissionDeniedError):
        asyncio.run(_create(coordinator, clock, STRANGER))
    assert "CreateElection" not in ledger.calls


@pytest.mark.parametrize("capabilities", [frozenset({LedgerCapability.ELECTION_STATUS})])
def test_ledger_without_registry_lets_anyone_create(coordinator, clock):
    async def scenario():
        election = await _create(coordinator, clock, STRANGER)
        assert election.admin == STRANGER
        with pytest.raises(StateError):
            await coordinator.is_admin(STRANGER)

    asyncio.run(scenario())


def _auth(address):
    return {"Authorization": f"Bearer {create_access_token(address)}"}


def test_admin_routes(coordinator):
    with TestClient(create_app(coordinator)) as client:
        assert client.get(f"/admin/{VOTER_2}").json() == {"address": VOTER_2, "is_admin": False}

        denied = client.post("/admin/add", json={"address": VOTER_2}, headers=_auth(STRANGER))
        assert denied.status_code == 403
        assert denied.json()["category"] == "permission_denied"

        added = client.post("/admin/add", json={"address": VOTER_2}, headers=_auth(ADMIN))
        assert added.json() == {"address": VOTER_2, "is_admin": True}

        removed = client.post("/admin/remove", json={"address": VOTER_2}, headers=_auth(ADMIN))
        assert removed.json() == {"address": VOTER_2, "is_admin": False}

        assert client.get("/admin/not-an-address").status_code == 422
