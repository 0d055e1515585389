# ballotledger/voting.py
# Vote submission: precondition checks, bounded retry and at-most-one vote per voter.
import asyncio
import logging
from typing import Optional, Set, Tuple

from .elections import ElectionReader
from .eligibility import EligibilityResolver
from .errors import AdapterError, AdapterErrorKind, AlreadyVotedError, NotEligibleError, NotFoundError, VoteInProgressError
from .ledger import LedgerAdapter
from .lifecycle import ElectionStateMachine
from .models.election_model import Election
from .models.vote_model import LedgerReceipt, VoteReceipt, VoteRecord
from .retry import RetryPolicy
from .storage import KIND_VOTE, LocalCacheAdapter, LocalCacheEntry, voter_key

logger = logging.getLogger(__name__)


class _Submission:
    """Outcome of the retried ledger call."""

    def __init__(self):
        self.receipt: Optional[LedgerReceipt] = None
        self.ambiguous = False
        self.recovered = False


class VoteSubmissionPipeline:
    """
    cast_vote() checks, in order: the election is active, the candidate
    belongs to it, the voter is approved (unless the election is public) and
    the ledger has no vote from this voter yet. It then submits the vote with
    the shared retry policy.

    Only one cast_vote per (election, voter) may be in flight in this
    process; a concurrent second call is rejected with VoteInProgressError.
    The ledger's duplicate-vote guard makes a retry after an ambiguous
    timeout safe.
    """

    def __init__(
        self,
        ledger: LedgerAdapter,
        resolver: EligibilityResolver,
        elections: ElectionReader,
        state_machine: ElectionStateMachine,
        cache: LocalCacheAdapter,
        retry: Optional[RetryPolicy] = None,
    ):
        self.ledger = ledger
        self.resolver = resolver
        self.elections = elections
        self.state_machine = state_machine
        self.cache = cache
        self.retry = retry or RetryPolicy()
        self._in_flight: Set[Tuple[int, str]] = set()

    def in_flight(self, election_id: int, voter_address: str) -> bool:
        return (election_id, voter_address.lower()) in self._in_flight

    async def cast_vote(self, election_id: int, voter_address: str, candidate_id: int) -> VoteReceipt:
        voter = voter_address.lower()
        key = (election_id, voter)
        if key in self._in_flight:
            raise VoteInProgressError("A vote for this voter is already being submitted.")
        self._in_flight.add(key)
        release = True
        try:
            election = await self.elections.load(election_id)
            await self._check_preconditions(election, voter, candidate_id)

            task = asyncio.ensure_future(self._submit(election_id, voter, candidate_id))
            try:
                submission = await asyncio.shield(task)
            except asyncio.CancelledError:
                # The transaction is allowed to finish; its result is never applied here.
                release = False
                task.add_done_callback(lambda t: self._release_after(t, key))
                raise
        finally:
            if release:
                self._in_flight.discard(key)

        cast_at = self.state_machine.now()
        view = await self._apply(election, voter, candidate_id, cast_at)
        if submission.recovered:
            logger.info(f"Vote by {voter} in election {election_id} confirmed after an ambiguous timeout")
        else:
            logger.info(f"Vote by {voter} in election {election_id} for candidate #{candidate_id} accepted")
        return VoteReceipt(
            election_id=election_id,
            voter_address=voter,
            candidate_id=candidate_id,
            cast_at=cast_at,
            receipt=submission.receipt,
            recovered=submission.recovered,
            election=self.state_machine.current(view),
        )

    def _release_after(self, task: asyncio.Future, key: Tuple[int, str]):
        self._in_flight.discard(key)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Abandoned vote submission for {key[1]} in election {key[0]} failed: {task.exception()}")

    async def _check_preconditions(self, election: Election, voter: str, candidate_id: int):
        self.state_machine.check_vote(election)
        if election.candidate(candidate_id) is None:
            raise NotFoundError(f"Candidate {candidate_id} is not part of election {election.id}.")
        if election.election_type.requires_registration:
            eligibility = await self.resolver.resolve(election.id, voter)
            if not eligibility.approved:
                raise NotEligibleError(
                    f"Voter is not approved for this election (status {eligibility.status.value}, source {eligibility.source.value})."
                )
        # Fresh read right before submitting; cached answers are not trusted here
        if await self.retry.run(lambda: self.ledger.has_voted(election.id, voter), f"has_voted {election.id}/{voter}"):
            raise AlreadyVotedError("You have already voted in this election.")

    async def _submit(self, election_id: int, voter: str, candidate_id: int) -> _Submission:
        submission = _Submission()

        def note_failure(e: AdapterError):
            if e.kind == AdapterErrorKind.TIMEOUT:
                submission.ambiguous = True

        try:
            submission.receipt = await self.retry.run(
                lambda: self.ledger.vote(voter, election_id, candidate_id),
                f"vote {election_id}/{voter}",
                on_retryable_failure=note_failure,
            )
        except AdapterError as e:
            if e.kind != AdapterErrorKind.REJECTED:
                raise
            if submission.ambiguous and await self._landed(election_id, voter):
                # An earlier attempt that timed out was in fact committed
                submission.receipt = LedgerReceipt(transaction_id=None, success=True)
                submission.recovered = True
                return submission
            logger.info(f"Ledger rejected vote by {voter} in election {election_id}: {e.message}")
            raise AlreadyVotedError("You have already voted in this election.")
        return submission

    async def _landed(self, election_id: int, voter: str) -> bool:
        try:
            return await self.retry.run(lambda: self.ledger.has_voted(election_id, voter), f"has_voted {election_id}/{voter}")
        except AdapterError as e:
            logger.warning(f"Could not confirm earlier vote attempt for {voter}: {e.message}")
            return False

    async def _apply(self, election: Election, voter: str, candidate_id: int, cast_at) -> Election:
        # Optimistic local view first, then resync from the ledger
        candidates = [
            c.model_copy(update={"vote_count": c.vote_count + 1}) if c.id == candidate_id else c
            for c in election.candidates
        ]
        optimistic = election.model_copy(update={"candidates": candidates, "total_votes": election.total_votes + 1})
        await self.elections.remember(optimistic, "optimistic")
        await self._record_vote(VoteRecord(election_id=election.id, voter_address=voter, candidate_id=candidate_id, cast_at=cast_at))
        try:
            return await self.elections.load(election.id)
        except AdapterError as e:
            logger.warning(f"Could not resynchronise election {election.id} after vote: {e.message}")
            return optimistic

    async def _record_vote(self, record: VoteRecord):
        key = voter_key(record.election_id, record.voter_address) + ":vote"
        entry = LocalCacheEntry(
            key=key, kind=KIND_VOTE, value=record.model_dump(mode="json"),
            source="local", observed_at=record.cast_at,
        )
        try:
            await self.cache.set(key, entry)
        except AdapterError as e:
            logger.warning(f"Could not record vote locally: {e.message}")
