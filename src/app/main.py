"""
Student System API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Database and Redis connections
- Bootstrap admin identity
- Request authentication and CORS middleware
- API routing
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import api_router
from app.core.auth import AuthenticationMiddleware, Principal, RequestAuthenticator
from app.core.config import settings
from app.core.database import async_session_maker, close_db, init_db
from app.core.redis import close_redis, init_redis
from app.core.security import get_token_service
from app.modules.users import service as users

logging.basicConfig(
    level=logging.DEBUG if settings.is_development else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


async def load_principal(username: str) -> Principal | None:
    """Identity lookup for the request authenticator, on its own session."""
    async with async_session_maker() as session:
        return await users.load_principal(session, username)


async def bootstrap_admin() -> None:
    async with async_session_maker() as session:
        created = await users.ensure_admin_exists(
            session, settings.admin_username, settings.admin_password
        )
    if not created:
        logger.info(f"Bootstrap admin already present: {settings.admin_username}")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events including:
    - Redis connection (optional outside production)
    - Database connection
    - Bootstrap admin
    """
    # Startup
    logger.info(f"Starting Student System API in {settings.python_env} mode...")

    # Initialize Redis
    try:
        await init_redis()
        logger.info("[OK] Redis connected")
    except Exception as e:
        logger.warning(f"[FAIL] Redis connection failed: {e}")
        if settings.is_production:
            raise

    # Initialize Database
    try:
        await init_db()
        logger.info("[OK] Database connected")
    except Exception as e:
        logger.error(f"[FAIL] Database connection failed: {e}")
        if settings.is_production:
            raise

    if settings.bootstrap_admin_enabled:
        try:
            await bootstrap_admin()
        except Exception as e:
            logger.error(f"[FAIL] Bootstrap admin could not be ensured: {e}")
            if settings.is_production:
                raise

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down Student System API...")
    await close_redis()
    await close_db()
    logger.info("[OK] Cleanup complete")


app = FastAPI(
    title="Student System API",
    description="Student record system: accounts, tokens and email verification",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api")

# Runs before every route handler; never rejects a request
app.add_middleware(
    AuthenticationMiddleware,
    authenticator=RequestAuthenticator(get_token_service(), load_principal),
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - API welcome message."""
    return {
        "message": "Welcome to Student System API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, str]:
    """Readiness check endpoint."""
    return {"status": "ready"}
