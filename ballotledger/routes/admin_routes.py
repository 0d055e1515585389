from fastapi import APIRouter, Depends

from ..coordinator import Coordinator
from ..schemas import AdminStatus, AdminUpdateRequest
from ..security import normalize_address
from .deps import get_coordinator, get_identity

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/{address}", response_model=AdminStatus)
async def get_admin_status(address: str, coordinator: Coordinator = Depends(get_coordinator)):
    return AdminStatus(address=normalize_address(address), is_admin=await coordinator.is_admin(address))


# Owner only
@router.post("/add", response_model=AdminStatus)
async def add_admin(
    request: AdminUpdateRequest,
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    is_admin = await coordinator.add_admin(request.address, identity)
    return AdminStatus(address=normalize_address(request.address), is_admin=is_admin)


# Owner only; the owner itself cannot be removed
@router.post("/remove", response_model=AdminStatus)
async def remove_admin(
    request: AdminUpdateRequest,
    identity: str = Depends(get_identity),
    coordinator: Coordinator = Depends(get_coordinator),
):
    is_admin = await coordinator.remove_admin(request.address, identity)
    return AdminStatus(address=normalize_address(request.address), is_admin=is_admin)
