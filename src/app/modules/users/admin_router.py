"""
Users Admin Router

Role-gated endpoints; every route requires the ADMIN role.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal, require_role
from app.core.database import get_db
from app.modules.users.models import UserRole
from app.modules.users.repository import UserRepository
from app.modules.users.schemas import UserListResponse, UserProfileResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/users", response_model=UserListResponse)
async def list_users(
    admin: Principal = Depends(require_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> UserListResponse:
    """
    List all identities.

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: Caller is not an admin
    """
    users = await UserRepository.list_all(db)
    logger.info(f"Admin {admin.username} listed {len(users)} users")
    return UserListResponse(
        users=[
            UserProfileResponse(username=u.username, email=u.email, roles=sorted(u.roles or []))
            for u in users
        ],
        total=len(users),
    )
