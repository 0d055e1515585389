from typing import List

from fastapi import APIRouter, Depends, Path

from ..coordinator import Coordinator
from ..models.voter_model import VoterRegistration
from ..schemas import VoterRegisterRequest, VoterStatusUpdateRequest
from .deps import get_coordinator, get_identity

router = APIRouter(prefix="/voter", tags=["Voter"])


@router.post("/{election_id}/register", response_model=VoterRegistration, response_model_exclude={"verification_data"})
async def register_voter(
    request: VoterRegisterRequest,
    election_id: int = Path(..., ge=1),
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    return await coordinator.register_voter(election_id, identity, request.verification_data)


@router.get("/{election_id}/pending", response_model=List[VoterRegistration])
async def pending_registrations(
    election_id: int = Path(..., ge=1),
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    """Admin only. Verification data is returned decrypted for review."""
    return await coordinator.pending_registrations(election_id, identity)


@router.post("/{election_id}/{voter_address}/status", response_model=VoterRegistration, response_model_exclude={"verification_data"})
async def update_voter_status(
    request: VoterStatusUpdateRequest,
    voter_address: str,
    election_id: int = Path(..., ge=1),
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    if request.status == "approve":
        return await coordinator.approve_voter(election_id, voter_address, identity)
    if request.status == "reject":
        return await coordinator.reject_voter(election_id, voter_address, identity)
    return await coordinator.blacklist_voter(election_id, voter_address, identity)
