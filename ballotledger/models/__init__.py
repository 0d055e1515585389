from .election_model import (
    Candidate,
    CandidateTally,
    Election,
    ElectionStatus,
    ElectionType,
    ElectionView,
    derive_status,
    TallyResult,
)
from .vote_model import FinalizeResult, LedgerReceipt, VoteReceipt, VoteRecord
from .voter_model import EligibilityResult, EligibilitySource, VoterRegistration, VoterStatus

__all__ = [
    "Candidate",
    "CandidateTally",
    "Election",
    "ElectionStatus",
    "ElectionType",
    "ElectionView",
    "EligibilityResult",
    "EligibilitySource",
    "FinalizeResult",
    "LedgerReceipt",
    "TallyResult",
    "VoteReceipt",
    "VoteRecord",
    "VoterRegistration",
    "VoterStatus",
    "derive_status",
]
