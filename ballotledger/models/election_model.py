from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class ElectionStatus(str, Enum):
    DRAFT = "draft"
    REGISTRATION = "registration"
    ACTIVE = "active"
    ENDED = "ended"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    @classmethod
    def from_code(cls, code: int) -> "ElectionStatus":
        """Ledger status codes follow the lifecycle order (0=DRAFT ... 4=FINALIZED)."""
        if not isinstance(code, int) or isinstance(code, bool) or not 0 <= code < len(_STATUS_ORDER):
            raise ValueError(f"unknown election status code: {code!r}")
        return _STATUS_ORDER[code]


_STATUS_ORDER = [
    ElectionStatus.DRAFT,
    ElectionStatus.REGISTRATION,
    ElectionStatus.ACTIVE,
    ElectionStatus.ENDED,
    ElectionStatus.FINALIZED,
]


def derive_status(stored: ElectionStatus, voting_start: datetime, voting_end: datetime, now: datetime) -> ElectionStatus:
    """
    Effective lifecycle status at `now`.

    DRAFT and FINALIZED only move by explicit action. REGISTRATION becomes
    ACTIVE once voting has started, and REGISTRATION/ACTIVE become ENDED once
    voting has closed. The result is never behind the stored status.
    """
    if stored in (ElectionStatus.DRAFT, ElectionStatus.FINALIZED, ElectionStatus.ENDED):
        return stored
    if now >= voting_end:
        return ElectionStatus.ENDED
    if now >= voting_start:
        return ElectionStatus.ACTIVE
    return stored


class ElectionType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    ORGANIZATION = "organization"

    @property
    def code(self) -> int:
        return list(ElectionType).index(self)

    @classmethod
    def from_code(cls, code: int) -> "ElectionType":
        members = list(cls)
        if not isinstance(code, int) or isinstance(code, bool) or not 0 <= code < len(members):
            raise ValueError(f"unknown election type code: {code!r}")
        return members[code]

    @property
    def requires_registration(self) -> bool:
        return self is not ElectionType.PUBLIC


class Candidate(BaseModel):
    id: int = Field(..., ge=1)
    name: str
    details_ref: Optional[str] = None
    vote_count: int = Field(default=0, ge=0)


class Election(BaseModel):
    id: int = Field(..., ge=1)
    title: str
    description_ref: Optional[str] = None
    registration_start: datetime
    voting_start: datetime
    voting_end: datetime
    status: ElectionStatus = ElectionStatus.REGISTRATION
    election_type: ElectionType = ElectionType.PRIVATE
    admin: str
    candidates: List[Candidate] = Field(default_factory=list)
    total_votes: int = Field(default=0, ge=0)
    winning_candidate_id: Optional[int] = None

    @model_validator(mode="after")
    def check_schedule(self) -> "Election":
        if self.voting_start >= self.voting_end:
            raise ValueError("voting_start must be before voting_end")
        if self.registration_start > self.voting_start:
            raise ValueError("registration_start must not be after voting_start")
        return self

    @property
    def finalized(self) -> bool:
        return self.status == ElectionStatus.FINALIZED

    def candidate(self, candidate_id: int) -> Optional[Candidate]:
        for cand in self.candidates:
            if cand.id == candidate_id:
                return cand
        return None


class ElectionView(BaseModel):
    """What the UI gets for a single election: ledger facts plus off-chain description."""
    election: Election
    description: Optional[Dict[str, Any]] = None
    source: str = "ledger"
    stale: bool = False


class CandidateTally(BaseModel):
    candidate_id: int
    name: str
    vote_count: int


class TallyResult(BaseModel):
    election_id: int
    status: ElectionStatus
    total_votes: int
    candidates: List[CandidateTally]
    leading_candidate_ids: List[int]
    winning_candidate_id: Optional[int] = None
