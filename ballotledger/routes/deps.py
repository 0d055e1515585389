from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..coordinator import Coordinator
from ..errors import PermissionDeniedError
from ..security import identity_from_token

bearer_scheme = HTTPBearer(auto_error=False)


def get_coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator


def get_identity(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    """Caller address taken from the bearer token's subject."""
    if credentials is None:
        raise PermissionDeniedError("Missing bearer token.")
    return identity_from_token(credentials.credentials)
