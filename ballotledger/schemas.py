from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, constr

from .models.election_model import ElectionStatus, ElectionType


class ElectionCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[Dict[str, Any]] = None
    registration_start: datetime
    voting_start: datetime
    voting_end: datetime
    election_type: ElectionType = ElectionType.PRIVATE
    draft: bool = False


class CandidateCreate(BaseModel):
    name: str = Field(..., min_length=1)
    # Bio, manifesto, image reference; stored off-chain
    details: Optional[Dict[str, Any]] = None


class StatusAdvanceRequest(BaseModel):
    status: ElectionStatus


class VoterRegisterRequest(BaseModel):
    verification_data: Optional[str] = None


class VoterStatusUpdateRequest(BaseModel):
    status: constr(pattern="^(approve|reject|blacklist)$")


class VoteCast(BaseModel):
    election_id: int = Field(..., ge=1)
    candidate_id: int = Field(..., ge=1)


class ReceiptVerifyRequest(BaseModel):
    election_id: int = Field(..., ge=1)
    voter_address: str
    receipt: str = Field(..., min_length=1)


class AdminUpdateRequest(BaseModel):
    address: str


class AdminStatus(BaseModel):
    address: str
    is_admin: bool
