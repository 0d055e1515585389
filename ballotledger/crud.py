# ballotledger/crud.py
# Voter registration writes: register, list pending, admin status changes.
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from .content import ContentAdapter, current_registrations
from .elections import ElectionReader
from .eligibility import EligibilityResolver
from .errors import StateError
from .ledger import LedgerAdapter, LedgerCapability
from .lifecycle import ElectionStateMachine
from .models.voter_model import EligibilitySource, VoterRegistration, VoterStatus
from .retry import RetryPolicy
from .security import VerificationCipher

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RegistrationService:
    def __init__(
        self,
        ledger: LedgerAdapter,
        content: ContentAdapter,
        resolver: EligibilityResolver,
        elections: ElectionReader,
        state_machine: ElectionStateMachine,
        cipher: VerificationCipher,
        retry: Optional[RetryPolicy] = None,
    ):
        self.ledger = ledger
        self.content = content
        self.resolver = resolver
        self.elections = elections
        self.state_machine = state_machine
        self.cipher = cipher
        self.retry = retry or RetryPolicy()

    async def _retried(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        return await self.retry.run(operation, description)

    async def _current(self, election_id: int, voter: str) -> Optional[VoterRegistration]:
        records = await self._retried(lambda: self.content.list_by_election(election_id), f"list registrations {election_id}")
        return current_registrations(records).get(voter)

    # Create a new registration in PENDING state
    async def register_voter(self, election_id: int, voter: str, verification_data: Optional[str] = None) -> VoterRegistration:
        election = await self.elections.load(election_id)
        self.state_machine.check_register(election)

        existing = await self._current(election_id, voter)
        if existing is not None and existing.status != VoterStatus.REJECTED:
            raise StateError(f"Voter already registered for this election (status {existing.status.value}).")

        now = self.state_machine.now()
        registration = VoterRegistration(
            election_id=election_id,
            voter_address=voter,
            status=VoterStatus.PENDING,
            verification_data=self.cipher.seal(verification_data),
            registered_at=now,
            updated_at=now,
            supersedes=existing.address if existing else None,
        )
        registration = await self._store(registration)

        if self.ledger.supports(LedgerCapability.VOTER_REGISTRY):
            await self._retried(
                lambda: self.ledger.register_voter(voter, election_id, registration.address),
                f"register voter {election_id}/{voter}",
            )
        await self.resolver.remember(election_id, voter, VoterStatus.PENDING, EligibilitySource.CONTENT, registration)
        logger.info(f"Voter {voter} registered for election {election_id}")
        return registration

    # Get all pending registrations (admin only), verification data decrypted
    async def get_pending_registrations(self, election_id: int, requester: str) -> List[VoterRegistration]:
        election = await self.elections.load(election_id)
        self.state_machine.require_admin(election, requester, "review registrations")
        records = await self._retried(lambda: self.content.list_by_election(election_id), f"list registrations {election_id}")
        pending = [r for r in current_registrations(records).values() if r.status == VoterStatus.PENDING]
        pending.sort(key=lambda r: (r.registered_at, r.voter_address))
        return [r.model_copy(update={"verification_data": self.cipher.open(r.verification_data)}) for r in pending]

    # Update registration status (admin only); BLACKLISTED is terminal
    async def update_voter_status(self, election_id: int, voter: str, new_status: VoterStatus, requester: str) -> VoterRegistration:
        election = await self.elections.load(election_id)
        self.state_machine.require_admin(election, requester, "change voter status")

        existing = await self._current(election_id, voter)
        current = existing.status if existing else VoterStatus.NONE
        if self.ledger.supports(LedgerCapability.VOTER_STATUS):
            on_chain = await self._retried(
                lambda: self.ledger.get_voter_status(election_id, voter), f"voter status {election_id}/{voter}",
            )
            if on_chain == VoterStatus.BLACKLISTED:
                current = on_chain
        self.state_machine.check_voter_status_change(current, new_status)

        if self.ledger.supports(LedgerCapability.VOTER_REGISTRY):
            await self._retried(
                lambda: self.ledger.update_voter_status(requester, election_id, voter, new_status),
                f"update voter status {election_id}/{voter}",
            )
        elif self.ledger.supports(LedgerCapability.ALLOW_LIST) and new_status == VoterStatus.APPROVED:
            await self._retried(
                lambda: self.ledger.add_allowed_voter(requester, election_id, voter),
                f"add allowed voter {election_id}/{voter}",
            )
        elif new_status != VoterStatus.APPROVED:
            logger.info(f"Ledger keeps only an allow-list; {new_status.value} for {voter} is recorded off-chain")

        now = self.state_machine.now()
        if existing is not None:
            updated = existing.model_copy(update={
                "status": new_status,
                "updated_at": now,
                "approver": requester,
                "supersedes": existing.address,
                "address": None,
            })
        else:
            updated = VoterRegistration(
                election_id=election_id, voter_address=voter, status=new_status,
                registered_at=now, updated_at=now, approver=requester,
            )
        updated = await self._store(updated)
        await self.resolver.remember(election_id, voter, new_status, EligibilitySource.CONTENT, updated)
        logger.info(f"Voter {voter} in election {election_id} set to {new_status.value} by {requester}")
        return updated

    async def _store(self, registration: VoterRegistration) -> VoterRegistration:
        doc = registration.to_document()
        address = await self._retried(lambda: self.content.store(doc), f"store registration {registration.election_id}/{registration.voter_address}")
        return registration.model_copy(update={"address": address})
