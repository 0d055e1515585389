from typing import List

from fastapi import APIRouter, Depends, Path

from ..coordinator import Coordinator
from ..models.election_model import Election, ElectionView, TallyResult
from ..models.vote_model import FinalizeResult
from ..schemas import CandidateCreate, ElectionCreate, StatusAdvanceRequest
from .deps import get_coordinator, get_identity

router = APIRouter(prefix="/election", tags=["Election"])


@router.get("/all", response_model=List[ElectionView])
async def list_elections(coordinator: Coordinator = Depends(get_coordinator)):
    return await coordinator.list_elections()


@router.post("/create", response_model=Election)
async def create_election(
    election: ElectionCreate,
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    """The caller becomes the election admin."""
    return await coordinator.create_election(
        identity,
        election.title,
        election.registration_start,
        election.voting_start,
        election.voting_end,
        description=election.description,
        election_type=election.election_type,
        draft=election.draft,
    )


@router.get("/{election_id}", response_model=ElectionView)
async def get_election(election_id: int = Path(..., ge=1), coordinator: Coordinator = Depends(get_coordinator)):
    return await coordinator.get_election(election_id)


@router.post("/{election_id}/candidates", response_model=Election)
async def add_candidate(
    candidate: CandidateCreate,
    election_id: int = Path(..., ge=1),
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    return await coordinator.add_candidate(election_id, candidate.name, identity, details=candidate.details)


@router.post("/{election_id}/status", response_model=Election)
async def advance_status(
    request: StatusAdvanceRequest,
    election_id: int = Path(..., ge=1),
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    return await coordinator.advance_status(election_id, request.status, identity)


@router.post("/{election_id}/finalize", response_model=FinalizeResult)
async def finalize_election(
    election_id: int = Path(..., ge=1),
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    return await coordinator.finalize(election_id, identity)


@router.get("/{election_id}/results", response_model=TallyResult)
async def get_results(election_id: int = Path(..., ge=1), coordinator: Coordinator = Depends(get_coordinator)):
    return await coordinator.get_results(election_id)
