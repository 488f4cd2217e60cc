from fastapi import APIRouter

from app.modules.auth import router as auth_router
from app.modules.email_verification.router import router as email_verification_router
from app.modules.users.admin_router import router as admin_users_router
from app.modules.users.router import router as users_router

api_router = APIRouter()

api_router.include_router(auth_router, prefix="/auth", tags=["Authentication"])

api_router.include_router(
    email_verification_router, prefix="/auth", tags=["Email Verification"]
)

api_router.include_router(users_router, prefix="/users", tags=["Users"])

api_router.include_router(admin_users_router, prefix="/admin", tags=["Admin - Users"])
