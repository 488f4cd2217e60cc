"""
Authentication Router

Public account endpoints. Everything here is reachable without a token.

Endpoints:
- POST /auth/register - Create an identity
- POST /auth/login - Exchange credentials for a bearer token
- POST /auth/reset-password - Verify an email code and set a new password
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.rate_limit import rate_limit
from app.core.security import TokenService, get_token_service
from app.modules.auth.schemas import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
)
from app.modules.email_verification.models import CodeScene
from app.modules.email_verification.service import VerificationService, get_verification_service
from app.modules.users import service as users
from app.modules.users.service import UserServiceError

logger = logging.getLogger(__name__)

router = APIRouter()


def _service_error(e: UserServiceError) -> HTTPException:
    return HTTPException(
        status_code=e.status_code,
        detail={"error": e.error_code, "message": e.message},
    )


@router.post("/register", status_code=status.HTTP_200_OK, response_class=Response)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> Response:
    """
    Register a new identity with role USER.

    Raises:
        HTTPException 400: Username taken or email already bound
    """
    try:
        user = await users.register(db, data.username, data.password, data.email)
    except UserServiceError as e:
        raise _service_error(e) from e

    logger.info(f"User registered: {user.username}")
    return Response(status_code=status.HTTP_200_OK)


@router.post("/login", response_model=LoginResponse)
@rate_limit(
    limit=lambda: settings.login_rate_limit,
    window_seconds=lambda: settings.login_rate_window_seconds,
)
async def login(
    request: Request,
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> LoginResponse:
    """
    Authenticate and return a bearer token.

    The token carries the user's roles as of now; later role changes take
    effect on the next login.

    Raises:
        HTTPException 401: Unknown username or wrong password (same message)
        HTTPException 429: Too many attempts from this client
    """
    try:
        user = await users.authenticate(db, credentials.username, credentials.password)
    except UserServiceError as e:
        raise _service_error(e) from e

    logger.info(f"User logged in: {user.username} (roles: {', '.join(sorted(user.role_set))})")
    return LoginResponse(token=tokens.issue(user.username, user.role_set))


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    verification: VerificationService = Depends(get_verification_service),
) -> MessageResponse:
    """
    Reset a password with a ``reset_password`` email code.

    The password policy is checked before the code so a rejected password
    does not burn the code.

    Raises:
        HTTPException 400: Password too short, code rejected, or email unknown
    """
    try:
        users.check_password_policy(data.new_password, settings.min_password_length)
    except UserServiceError as e:
        raise _service_error(e) from e

    result = await verification.verify_code(db, data.email, data.code, CodeScene.RESET_PASSWORD)
    if not result.ok:
        logger.warning(f"Password reset rejected for {data.email}: {result.failure.value}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": result.failure.value,
                "code": result.api_code,
                "message": result.message,
            },
        )

    try:
        await users.reset_password(db, data.email, data.new_password, settings.min_password_length)
    except UserServiceError as e:
        raise _service_error(e) from e

    return MessageResponse(message="Password reset successfully.")
