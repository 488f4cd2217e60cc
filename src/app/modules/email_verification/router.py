"""
Email Verification Router

Public endpoints for requesting and checking email codes.

Endpoints:
- POST /auth/email/code/send - Issue a code for (email, scene)
- POST /auth/email/code/verify - Check a code for (email, scene)

Both answer ``{code, message}``: 200 with code 0 on success, 400 with the
failure's code on a business rejection, 500 on an unexpected fault.
"""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.modules.email_verification.schemas import (
    CodeResponse,
    SendCodeRequest,
    VerifyCodeRequest,
)
from app.modules.email_verification.service import (
    SEND_UNEXPECTED_ERROR_CODE,
    VERIFY_UNEXPECTED_ERROR_CODE,
    VerificationResult,
    VerificationService,
    get_verification_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/email/code", tags=["Email Verification"])

SERVER_ERROR_MESSAGE = "Server error, please try again later."


def result_response(result: VerificationResult) -> JSONResponse:
    body = CodeResponse(
        code=result.api_code,
        message=result.message,
        remaining_attempts=result.remaining_attempts,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if result.ok else status.HTTP_400_BAD_REQUEST,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


def server_error_response(code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"code": code, "message": SERVER_ERROR_MESSAGE},
    )


@router.post("/send", response_model=CodeResponse)
async def send_code(
    data: SendCodeRequest,
    db: AsyncSession = Depends(get_db),
    verification: VerificationService = Depends(get_verification_service),
) -> JSONResponse:
    """Send a verification code to an email address."""
    try:
        result = await verification.send_code(db, data.email, data.scene)
    except Exception:
        logger.exception(f"Unexpected error sending {data.scene.value} code")
        return server_error_response(SEND_UNEXPECTED_ERROR_CODE)
    return result_response(result)


@router.post("/verify", response_model=CodeResponse)
async def verify_code(
    data: VerifyCodeRequest,
    db: AsyncSession = Depends(get_db),
    verification: VerificationService = Depends(get_verification_service),
) -> JSONResponse:
    """Check a verification code."""
    try:
        result = await verification.verify_code(db, data.email, data.code, data.scene)
    except Exception:
        logger.exception(f"Unexpected error verifying {data.scene.value} code")
        return server_error_response(VERIFY_UNEXPECTED_ERROR_CODE)
    return result_response(result)
