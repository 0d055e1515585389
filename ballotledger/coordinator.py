# ballotledger/coordinator.py
# Single entry point for the UI: composes the adapters, the state machine,
# the eligibility resolver, the vote pipeline and the tally engine.
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from . import config
from .config import BackendMode
from .content import ContentAdapter, InMemoryContentAdapter
from .crud import RegistrationService
from .elections import ElectionReader
from .eligibility import EligibilityResolver
from .errors import AdapterError, PermissionDeniedError, StateError, ValidationError
from .ledger import FabricLedgerAdapter, InMemoryLedgerAdapter, LedgerAdapter, LedgerCapability, to_timestamp
from .lifecycle import ElectionStateMachine, utcnow
from .models.election_model import Election, ElectionStatus, ElectionType, ElectionView, TallyResult
from .models.vote_model import FinalizeResult, VoteReceipt
from .models.voter_model import EligibilityResult, VoterRegistration, VoterStatus
from .retry import RetryPolicy
from .security import VerificationCipher, load_fernet, normalize_address
from .storage import LocalCacheAdapter
from .tally import TallyEngine
from .voting import VoteSubmissionPipeline
from .watcher import ElectionWatcher, StatusCallback

logger = logging.getLogger(__name__)

KIND_ELECTION_DESCRIPTION = "election_description"
KIND_CANDIDATE_DETAILS = "candidate_details"


def _election_id(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"Invalid election id: {value!r}")
    return value


class Coordinator:
    """
    Facade over the election lifecycle and voter-eligibility machinery.

    Every operation validates its input, applies the lifecycle guards and
    returns plain value objects. The coordinator keeps no state of its own
    beyond the adapters it was built with.
    """

    def __init__(
        self,
        ledger: LedgerAdapter,
        content: ContentAdapter,
        cache: LocalCacheAdapter,
        cipher: VerificationCipher,
        retry: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
        mode: BackendMode = BackendMode.SIMULATED,
    ):
        self.mode = mode
        self.ledger = ledger
        self.content = content
        self.cache = cache
        self.retry = retry or RetryPolicy()
        self.state_machine = ElectionStateMachine(clock)
        self.elections = ElectionReader(ledger, cache, self.retry, clock)
        self.resolver = EligibilityResolver(ledger, content, cache, self.retry, clock)
        self.pipeline = VoteSubmissionPipeline(ledger, self.resolver, self.elections, self.state_machine, cache, self.retry)
        self.tally_engine = TallyEngine(ledger, self.elections, self.state_machine, self.retry)
        self.registrations = RegistrationService(
            ledger, content, self.resolver, self.elections, self.state_machine, cipher, self.retry,
        )

    # ------------------------------
    # Reads
    # ------------------------------

    async def list_elections(self) -> List[ElectionView]:
        views = await self.elections.list_all()
        return [self._present(view) for view in views]

    async def get_election(self, election_id: int) -> ElectionView:
        view = await self.elections.read(_election_id(election_id))
        view = self._present(view)
        if view.election.description_ref:
            view.description = await self._fetch_content(view.election.description_ref)
        return view

    async def check_eligibility(self, election_id: int, voter: str) -> EligibilityResult:
        return await self.resolver.resolve(_election_id(election_id), normalize_address(voter))

    async def get_results(self, election_id: int) -> TallyResult:
        view = await self.elections.read(_election_id(election_id))
        return self.tally_engine.tally(view.election)

    async def pending_registrations(self, election_id: int, requester: str) -> List[VoterRegistration]:
        return await self.registrations.get_pending_registrations(_election_id(election_id), normalize_address(requester))

    async def verify_vote_receipt(self, election_id: int, voter: str, receipt: str) -> bool:
        if not receipt:
            raise ValidationError("Receipt must not be empty.")
        election_id, voter = _election_id(election_id), normalize_address(voter)
        return await self.retry.run(
            lambda: self.ledger.verify_vote_receipt(election_id, voter, receipt),
            f"verify receipt {election_id}/{voter}",
        )

    def _present(self, view: ElectionView) -> ElectionView:
        return view.model_copy(update={"election": self.state_machine.current(view.election)})

    async def _fetch_content(self, address: str) -> Optional[Dict[str, Any]]:
        # Descriptions are decoration; an unavailable store must not hide the election
        try:
            return await self.retry.run(lambda: self.content.fetch(address), f"fetch content {address}")
        except AdapterError as e:
            logger.warning(f"Could not load content object {address}: {e.message}")
            return None

    # ------------------------------
    # Election administration
    # ------------------------------

    async def create_election(
        self,
        requester: str,
        title: str,
        registration_start: datetime,
        voting_start: datetime,
        voting_end: datetime,
        description: Optional[Dict[str, Any]] = None,
        election_type: ElectionType = ElectionType.PRIVATE,
        draft: bool = False,
    ) -> Election:
        requester = normalize_address(requester)
        if not title or not title.strip():
            raise ValidationError("Election title must not be empty.")
        if voting_start >= voting_end:
            raise ValidationError("voting_start must be before voting_end.")
        if registration_start > voting_start:
            raise ValidationError("registration_start must not be after voting_start.")
        if draft and not self.ledger.supports(LedgerCapability.ELECTION_STATUS):
            raise ValidationError("This ledger does not track draft elections.")
        if self.ledger.supports(LedgerCapability.ADMIN_REGISTRY):
            if not await self.retry.run(lambda: self.ledger.is_admin(requester), f"is_admin {requester}"):
                raise PermissionDeniedError("Only registered admins can create elections.")
        title = title.strip()

        description_ref = None
        if description:
            doc = {"kind": KIND_ELECTION_DESCRIPTION, "title": title, **description}
            description_ref = await self.retry.run(lambda: self.content.store(doc), "store election description")

        known = await self.retry.run(self.ledger.list_election_ids, "list elections")
        newest_known = max(known, default=0)
        status = ElectionStatus.DRAFT if draft else ElectionStatus.REGISTRATION

        async def submit() -> int:
            election_id, receipt = await self.ledger.create_election(
                requester, title, description_ref, registration_start, voting_start, voting_end,
                election_type, status,
            )
            logger.info(f"Election {election_id} created by {requester} (txid={receipt.transaction_id})")
            return election_id

        async def landed() -> Optional[int]:
            for existing_id in sorted(await self.ledger.list_election_ids(), reverse=True):
                if existing_id <= newest_known:
                    break
                created = await self.ledger.get_election_details(existing_id)
                if (created.admin == requester and created.title == title
                        and to_timestamp(created.voting_start) == to_timestamp(voting_start)
                        and to_timestamp(created.voting_end) == to_timestamp(voting_end)):
                    return existing_id
            return None

        election_id = await asyncio.shield(self.retry.run_write(submit, landed, "create election"))
        return self.state_machine.current(await self.elections.load(election_id))

    async def add_candidate(
        self,
        election_id: int,
        name: str,
        requester: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Election:
        election_id, requester = _election_id(election_id), normalize_address(requester)
        if not name or not name.strip():
            raise ValidationError("Candidate name must not be empty.")
        name = name.strip()
        election = await self.elections.load(election_id)
        self.state_machine.check_add_candidate(election, requester)

        details_ref = None
        if details:
            doc = {"kind": KIND_CANDIDATE_DETAILS, "election_id": election_id, "name": name, **details}
            details_ref = await self.retry.run(lambda: self.content.store(doc), "store candidate details")

        known = len(election.candidates)

        async def submit() -> bool:
            await self.ledger.add_candidate(requester, election_id, name, details_ref)
            return True

        async def landed() -> Optional[bool]:
            current = await self.ledger.get_election_details(election_id)
            if any(c.name == name and c.details_ref == details_ref for c in current.candidates[known:]):
                return True
            return None

        await asyncio.shield(self.retry.run_write(submit, landed, f"add candidate to election {election_id}"))
        logger.info(f"Candidate {name!r} added to election {election_id}")
        return self.state_machine.current(await self.elections.load(election_id))

    async def advance_status(self, election_id: int, target: ElectionStatus, requester: str) -> Election:
        election_id, requester = _election_id(election_id), normalize_address(requester)
        election = await self.elections.load(election_id)
        self.state_machine.check_transition(election, target, requester)
        if not self.ledger.supports(LedgerCapability.ELECTION_STATUS):
            raise StateError("This ledger derives status from the schedule; it cannot be set explicitly.")

        async def submit() -> bool:
            await self.ledger.update_election_status(requester, election_id, target)
            return True

        async def landed() -> Optional[bool]:
            current = await self.ledger.get_election_details(election_id)
            return True if current.status == target else None

        await asyncio.shield(self.retry.run_write(submit, landed, f"update status of election {election_id}"))
        logger.info(f"Election {election_id} moved to {target.value} by {requester}")
        return self.state_machine.current(await self.elections.load(election_id))

    async def finalize(self, election_id: int, admin: str) -> FinalizeResult:
        return await self.tally_engine.finalize(_election_id(election_id), normalize_address(admin))

    # ------------------------------
    # Voters
    # ------------------------------

    async def register_voter(self, election_id: int, voter: str, verification_data: Optional[str] = None) -> VoterRegistration:
        return await self.registrations.register_voter(_election_id(election_id), normalize_address(voter), verification_data)

    async def approve_voter(self, election_id: int, voter: str, requester: str) -> VoterRegistration:
        return await self._set_voter_status(election_id, voter, VoterStatus.APPROVED, requester)

    async def reject_voter(self, election_id: int, voter: str, requester: str) -> VoterRegistration:
        return await self._set_voter_status(election_id, voter, VoterStatus.REJECTED, requester)

    async def blacklist_voter(self, election_id: int, voter: str, requester: str) -> VoterRegistration:
        return await self._set_voter_status(election_id, voter, VoterStatus.BLACKLISTED, requester)

    async def _set_voter_status(self, election_id: int, voter: str, status: VoterStatus, requester: str) -> VoterRegistration:
        return await self.registrations.update_voter_status(
            _election_id(election_id), normalize_address(voter), status, normalize_address(requester),
        )

    async def cast_vote(self, election_id: int, voter: str, candidate_id: int) -> VoteReceipt:
        if isinstance(candidate_id, bool) or not isinstance(candidate_id, int) or candidate_id < 1:
            raise ValidationError(f"Invalid candidate id: {candidate_id!r}")
        return await self.pipeline.cast_vote(_election_id(election_id), normalize_address(voter), candidate_id)

    # ------------------------------
    # Admin registry
    # ------------------------------

    def _require_registry(self):
        if not self.ledger.supports(LedgerCapability.ADMIN_REGISTRY):
            raise StateError("This ledger has no admin registry.")

    async def is_admin(self, address: str) -> bool:
        address = normalize_address(address)
        self._require_registry()
        return await self.retry.run(lambda: self.ledger.is_admin(address), f"is_admin {address}")

    async def add_admin(self, address: str, requester: str) -> bool:
        return await self._set_admin(address, requester, True)

    async def remove_admin(self, address: str, requester: str) -> bool:
        return await self._set_admin(address, requester, False)

    async def _set_admin(self, address: str, requester: str, admin: bool) -> bool:
        address, requester = normalize_address(address), normalize_address(requester)
        self._require_registry()
        owner = await self.retry.run(self.ledger.get_owner, "get ledger owner")
        if requester != owner:
            raise PermissionDeniedError("Only the ledger owner can manage admins.")
        if not admin and address == owner:
            raise StateError("The ledger owner is always an admin.")

        # Setting the flag a second time leaves the registry unchanged
        if admin:
            write = lambda: self.ledger.add_admin(requester, address)
        else:
            write = lambda: self.ledger.remove_admin(requester, address)
        await asyncio.shield(self.retry.run(write, f"{'add' if admin else 'remove'} admin {address}"))
        logger.info(f"Admin {address} {'added' if admin else 'removed'} by {requester}")
        return await self.is_admin(address)

    # ------------------------------
    # Status re-evaluation
    # ------------------------------

    def watch_election(
        self,
        election_id: int,
        on_change: StatusCallback,
        interval: float = config.STATUS_POLL_SECONDS,
    ) -> ElectionWatcher:
        """Watcher for one election; use it as `async with` or call start()/stop()."""
        return ElectionWatcher(_election_id(election_id), self.elections, self.state_machine, on_change, interval)


def build_coordinator(
    mode: BackendMode = config.BACKEND_MODE,
    cache_path: Optional[str] = config.CACHE_PATH,
    cipher: Optional[VerificationCipher] = None,
) -> Coordinator:
    """Wire adapters for the configured backend mode. The mode never changes afterwards."""
    cache = LocalCacheAdapter(cache_path)
    cipher = cipher or VerificationCipher(load_fernet(config.FERNET_KEY_FILE))
    if mode == BackendMode.LIVE:
        from .database import get_content_collection
        from .storage_mongo import MongoContentAdapter

        ledger = FabricLedgerAdapter()
        content = MongoContentAdapter(get_content_collection())
    else:
        ledger = InMemoryLedgerAdapter(owner=config.LEDGER_OWNER or None)
        content = InMemoryContentAdapter()
    logger.info(f"Coordinator built in {mode.value} mode with ledger capabilities "
                f"{sorted(c.value for c in ledger.capabilities)}")
    return Coordinator(ledger, content, cache, cipher, mode=mode)
