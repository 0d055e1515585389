# ballotledger/tally.py
import asyncio
import logging
from typing import List, Optional, Sequence

from .elections import ElectionReader
from .errors import AdapterError, AdapterErrorKind, StateError
from .ledger import LedgerAdapter
from .lifecycle import ElectionStateMachine
from .models.election_model import Candidate, CandidateTally, Election, TallyResult
from .models.vote_model import FinalizeResult, LedgerReceipt
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def leading_candidates(candidates: Sequence[Candidate]) -> List[int]:
    if not candidates:
        return []
    best = max(c.vote_count for c in candidates)
    return sorted(c.id for c in candidates if c.vote_count == best)


def winning_candidate(candidates: Sequence[Candidate]) -> int:
    """Highest vote count; ties go to the lowest candidate id (first added)."""
    leaders = leading_candidates(candidates)
    if not leaders:
        raise StateError("Election has no candidates.")
    return leaders[0]


class TallyEngine:
    def __init__(
        self,
        ledger: LedgerAdapter,
        elections: ElectionReader,
        state_machine: ElectionStateMachine,
        retry: Optional[RetryPolicy] = None,
    ):
        self.ledger = ledger
        self.elections = elections
        self.state_machine = state_machine
        self.retry = retry or RetryPolicy()

    def tally(self, election: Election) -> TallyResult:
        return TallyResult(
            election_id=election.id,
            status=self.state_machine.effective_status(election),
            total_votes=election.total_votes,
            candidates=[CandidateTally(candidate_id=c.id, name=c.name, vote_count=c.vote_count) for c in election.candidates],
            leading_candidate_ids=leading_candidates(election.candidates),
            winning_candidate_id=self._recorded_winner(election) if election.finalized else None,
        )

    @staticmethod
    def _recorded_winner(election: Election) -> int:
        # Older chaincode does not store the winner; final counts give the same answer
        if election.winning_candidate_id is not None:
            return election.winning_candidate_id
        return winning_candidate(election.candidates)

    async def finalize(self, election_id: int, requester: str) -> FinalizeResult:
        election = await self.elections.load(election_id)
        if self.state_machine.check_finalize(election, requester):
            logger.info(f"Election {election_id} already finalized, returning recorded winner")
            return FinalizeResult(
                election_id=election_id,
                winning_candidate_id=self._recorded_winner(election),
                already_finalized=True,
            )

        winner = winning_candidate(election.candidates)
        ambiguous = False

        def note_failure(e: AdapterError):
            nonlocal ambiguous
            if e.kind == AdapterErrorKind.TIMEOUT:
                ambiguous = True

        try:
            receipt = await asyncio.shield(self.retry.run(
                lambda: self.ledger.finalize_election(requester, election_id),
                f"finalize election {election_id}",
                on_retryable_failure=note_failure,
            ))
        except AdapterError as e:
            if e.kind != AdapterErrorKind.REJECTED:
                raise
            # Either a timed-out attempt landed or someone finalized meanwhile
            current = await self.elections.load(election_id)
            if not current.finalized:
                raise
            logger.info(f"Election {election_id} was finalized by an earlier attempt (ambiguous={ambiguous})")
            return FinalizeResult(
                election_id=election_id,
                winning_candidate_id=self._recorded_winner(current),
                already_finalized=True,
            )

        winner = self._confirm_winner(election_id, winner, receipt)
        await self.elections.remember(self.state_machine.finalized(election, winner), "ledger")
        return FinalizeResult(election_id=election_id, winning_candidate_id=winner, receipt=receipt)

    @staticmethod
    def _confirm_winner(election_id: int, computed: int, receipt: LedgerReceipt) -> int:
        if receipt.payload is None:
            return computed
        try:
            on_chain = int(receipt.payload)
        except ValueError:
            return computed
        if on_chain != computed:
            logger.warning(f"Ledger recorded winner #{on_chain} for election {election_id}, local tally gave #{computed}")
        return on_chain
