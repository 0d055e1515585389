# tests/test_registration.py
import asyncio

import pytest

from ballotledger.content import current_registrations
from ballotledger.errors import PermissionDeniedError, StateError
from ballotledger.ledger import LedgerCapability
from ballotledger.models import EligibilitySource, VoterStatus
from conftest import ADMIN, STRANGER, VOTER, VOTER_2, open_election


def test_register_creates_pending_registration(coordinator, clock, ledger):
    async def scenario():
        election = await open_election(coordinator, clock)
        registration = await coordinator.register_voter(election.id, VOTER, "student-id:42")
        assert registration.status == VoterStatus.PENDING
        assert registration.address
        assert registration.verification_data != "student-id:42"
        assert await ledger.get_voter_status(election.id, VOTER) == VoterStatus.PENDING

        with pytest.raises(StateError):
            await coordinator.register_voter(election.id, VOTER, "again")

    asyncio.run(scenario())


def test_pending_registrations_are_decrypted_for_admin(coordinator, clock):
    async def scenario():
        election = await open_election(coordinator, clock)
        await coordinator.register_voter(election.id, VOTER, "student-id:1")
        clock.advance(minutes=1)
        await coordinator.register_voter(election.id, VOTER_2, "student-id:2")

        pending = await coordinator.pending_registrations(election.id, ADMIN)
        assert [r.voter_address for r in pending] == [VOTER, VOTER_2]
        assert [r.verification_data for r in pending] == ["student-id:1", "student-id:2"]

        with pytest.raises(PermissionDeniedError):
            await coordinator.pending_registrations(election.id, STRANGER)

        await coordinator.approve_voter(election.id, VOTER, ADMIN)
        pending = await coordinator.pending_registrations(election.id, ADMIN)
        assert [r.voter_address for r in pending] == [VOTER_2]

    asyncio.run(scenario())


def test_status_change_supersedes_previous_version(coordinator, clock, content):
    async def scenario():
        election = await open_election(coordinator, clock)
        first = await coordinator.register_voter(election.id, VOTER, "student-id:1")
        clock.advance(minutes=5)
        approved = await coordinator.approve_voter(election.id, VOTER, ADMIN)
        assert approved.supersedes == first.address
        assert approved.approver == ADMIN

        records = await content.list_by_election(election.id)
        assert len(records) == 2
        assert current_registrations(records)[VOTER].status == VoterStatus.APPROVED

    asyncio.run(scenario())


def test_rejected_voter_may_register_again(coordinator, clock):
    async def scenario():
        election = await open_election(coordinator, clock)
        await coordinator.register_voter(election.id, VOTER, "blurry scan")
        await coordinator.reject_voter(election.id, VOTER, ADMIN)
        clock.advance(minutes=1)
        again = await coordinator.register_voter(election.id, VOTER, "clear scan")
        assert again.status == VoterStatus.PENDING
        assert (await coordinator.check_eligibility(election.id, VOTER)).status == VoterStatus.PENDING

    asyncio.run(scenario())


def test_blacklist_is_terminal(coordinator, clock):
    async def scenario():
        election = await open_election(coordinator, clock)
        await coordinator.register_voter(election.id, VOTER, "student-id:1")
        await coordinator.blacklist_voter(election.id, VOTER, ADMIN)
        with pytest.raises(StateError):
            await coordinator.approve_voter(election.id, VOTER, ADMIN)
        with pytest.raises(StateError):
            await coordinator.register_voter(election.id, VOTER, "student-id:1")
        assert (await coordinator.check_eligibility(election.id, VOTER)).status == VoterStatus.BLACKLISTED

    asyncio.run(scenario())


def test_only_admin_changes_voter_status(coordinator, clock):
    async def scenario():
        election = await open_election(coordinator, clock)
        await coordinator.register_voter(election.id, VOTER, "student-id:1")
        with pytest.raises(PermissionDeniedError):
            await coordinator.approve_voter(election.id, VOTER, VOTER)

    asyncio.run(scenario())


def test_registration_closes_when_voting_ends(coordinator, clock):
    async def scenario():
        election = await open_election(coordinator, clock)
        clock.advance(hours=3)
        with pytest.raises(StateError):
            await coordinator.register_voter(election.id, VOTER, "late")

    asyncio.run(scenario())


@pytest.mark.parametrize("capabilities", [frozenset({LedgerCapability.ALLOW_LIST, LedgerCapability.ELECTION_STATUS})])
def test_approval_on_allow_list_ledger(coordinator, clock, ledger):
    async def scenario():
        election = await open_election(coordinator, clock)
        await coordinator.register_voter(election.id, VOTER, "student-id:1")
        assert "RegisterVoter" not in ledger.calls

        await coordinator.approve_voter(election.id, VOTER, ADMIN)
        assert "AddAllowedVoter" in ledger.calls
        assert await ledger.is_voter_allowed(election.id, VOTER)

        await coordinator.register_voter(election.id, VOTER_2, "student-id:2")
        await coordinator.reject_voter(election.id, VOTER_2, ADMIN)
        result = await coordinator.check_eligibility(election.id, VOTER_2)
        # The allow-list only knows members; the ledger answer wins
        assert result.source == EligibilitySource.LEDGER
        assert result.status == VoterStatus.NONE

        clock.advance(minutes=61)
        receipt = await coordinator.cast_vote(election.id, VOTER, 1)
        assert receipt.election.total_votes == 1

    asyncio.run(scenario())
