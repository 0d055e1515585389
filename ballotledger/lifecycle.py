# ballotledger/lifecycle.py
# Election lifecycle state machine. Pure checks over Election snapshots; it
# owns no state and performs no I/O.
import logging
from datetime import datetime, timezone
from typing import Callable

from .errors import PermissionDeniedError, StateError, ValidationError
from .models.election_model import Election, ElectionStatus, derive_status
from .models.voter_model import VoterStatus

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ElectionStateMachine:
    """
    DRAFT -> REGISTRATION -> ACTIVE -> ENDED -> FINALIZED, strictly forward.

    Time moves an election from REGISTRATION to ACTIVE at voting_start and to
    ENDED at voting_end. An admin may advance exactly one step at a time.
    FINALIZED is only reached through finalization.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    def effective_status(self, election: Election) -> ElectionStatus:
        return derive_status(election.status, election.voting_start, election.voting_end, self.now())

    def current(self, election: Election) -> Election:
        """Copy of the snapshot with the time-derived status applied."""
        status = self.effective_status(election)
        if status == election.status:
            return election
        return election.model_copy(update={"status": status})

    @staticmethod
    def is_admin(election: Election, identity: str) -> bool:
        return bool(identity) and identity.lower() == election.admin.lower()

    def require_admin(self, election: Election, identity: str, action: str):
        if not self.is_admin(election, identity):
            raise PermissionDeniedError(f"Only the election admin can {action}.")

    # --- guards ---

    def check_add_candidate(self, election: Election, requester: str):
        self.require_admin(election, requester, "add candidates")
        # Decided by the clock alone, whatever the status field reads
        if self.now() >= election.voting_start:
            raise StateError("Candidates can only be added before voting starts.")

    def check_vote(self, election: Election):
        status = self.effective_status(election)
        if status != ElectionStatus.ACTIVE:
            raise StateError(f"Election is {status.value}; votes are only accepted while it is active.")

    def check_register(self, election: Election):
        status = self.effective_status(election)
        if status not in (ElectionStatus.REGISTRATION, ElectionStatus.ACTIVE):
            raise StateError(f"Election is {status.value}; registration is closed.")

    def check_transition(self, election: Election, target: ElectionStatus, requester: str):
        self.require_admin(election, requester, "change the election status")
        if target == ElectionStatus.FINALIZED:
            raise StateError("Use finalize to close the tally.")
        status = self.effective_status(election)
        if target.rank != status.rank + 1:
            raise StateError(f"Cannot move election from {status.value} to {target.value}.")

    def check_finalize(self, election: Election, requester: str) -> bool:
        """
        Validate a finalize request. Returns True when the election is already
        finalized, in which case no ledger write must happen.
        """
        self.require_admin(election, requester, "finalize the election")
        if election.status == ElectionStatus.FINALIZED:
            return True
        status = self.effective_status(election)
        if status != ElectionStatus.ENDED:
            raise StateError(f"Election is {status.value}; only ended elections can be finalized.")
        if election.total_votes <= 0:
            raise StateError("Cannot finalize an election with no votes.")
        return False

    @staticmethod
    def check_voter_status_change(current: VoterStatus, target: VoterStatus):
        if target in (VoterStatus.NONE, VoterStatus.PENDING):
            raise ValidationError(f"Voters cannot be moved to {target.value} by an admin.")
        if current == VoterStatus.BLACKLISTED:
            raise StateError("Voter is blacklisted; their registration can no longer change.")

    def finalized(self, election: Election, winning_candidate_id: int) -> Election:
        logger.info(f"Election {election.id} finalized, winner candidate #{winning_candidate_id}")
        return election.model_copy(update={
            "status": ElectionStatus.FINALIZED,
            "winning_candidate_id": winning_candidate_id,
        })
