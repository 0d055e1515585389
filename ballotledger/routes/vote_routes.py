from fastapi import APIRouter, Depends, Path

from ..coordinator import Coordinator
from ..models.vote_model import VoteReceipt
from ..models.voter_model import EligibilityResult
from ..schemas import ReceiptVerifyRequest, VoteCast
from .deps import get_coordinator, get_identity

vote_router = APIRouter(prefix="/vote", tags=["Vote"])


@vote_router.get("/check/{election_id}", response_model=EligibilityResult)
async def check_eligibility(
    election_id: int = Path(..., ge=1),
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    return await coordinator.check_eligibility(election_id, identity)


@vote_router.post("/cast", response_model=VoteReceipt)
async def cast_vote(
    vote: VoteCast,
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    """
    Casts a vote as the token's address and records it on the ledger.
    """
    return await coordinator.cast_vote(vote.election_id, identity, vote.candidate_id)


@vote_router.post("/verify")
async def verify_vote_receipt(request: ReceiptVerifyRequest, coordinator: Coordinator = Depends(get_coordinator)):
    valid = await coordinator.verify_vote_receipt(request.election_id, request.voter_address, request.receipt)
    return {"election_id": request.election_id, "voter_address": request.voter_address.lower(), "valid": valid}
