"""
Users Router

Endpoints for the authenticated caller's own identity.
"""

from fastapi import APIRouter, Depends

from app.core.auth import Principal, get_current_principal
from app.modules.users.schemas import UserProfileResponse

router = APIRouter()


@router.get("/me", response_model=UserProfileResponse)
async def read_me(principal: Principal = Depends(get_current_principal)) -> UserProfileResponse:
    """
    Return the caller's identity.

    Raises:
        HTTPException 401: If the request carries no valid bearer token
    """
    return UserProfileResponse(
        username=principal.username,
        email=principal.email,
        roles=sorted(principal.roles),
    )
