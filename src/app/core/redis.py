"""
Redis Configuration

Optional async Redis client. When connected it backs the login limiter and
the advisory lock that serializes verification-code issuance per
(email, scene). Everything keeps working without it.
"""

import contextlib
import logging
from collections.abc import AsyncIterator

from redis.asyncio import Redis, from_url

from app.core.config import settings

logger = logging.getLogger(__name__)

# Redis client instance
redis_client: Redis | None = None

# Lock lifetime; issuance is a couple of queries, well under this bound
ISSUE_LOCK_TIMEOUT_SECONDS = 10
ISSUE_LOCK_WAIT_SECONDS = 5


async def init_redis() -> Redis:
    """
    Initialize Redis connection.

    Call this on application startup.
    """
    global redis_client
    client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Test connection before publishing the client
    await client.ping()
    redis_client = client
    return redis_client


async def get_redis() -> Redis | None:
    """
    Get Redis client instance.

    Returns None if Redis is not available (optional dependency).
    """
    return redis_client


def is_redis_available() -> bool:
    """Check if Redis client is initialized and available."""
    return redis_client is not None


async def close_redis() -> None:
    """Close Redis connection."""
    global redis_client
    if redis_client:
        await redis_client.close()
        redis_client = None


def issue_lock_key(email: str, scene: str) -> str:
    return f"email_code:issue_lock:{scene}:{email}"


def issue_lock_factory(client: Redis | None):
    """
    Build the per-(email, scene) issuance lock for the verification service.

    Without Redis the returned factory yields immediately.
    """

    @contextlib.asynccontextmanager
    async def lock(email: str, scene: str) -> AsyncIterator[None]:
        if client is None:
            yield
            return
        async with client.lock(
            issue_lock_key(email, scene),
            timeout=ISSUE_LOCK_TIMEOUT_SECONDS,
            blocking_timeout=ISSUE_LOCK_WAIT_SECONDS,
        ):
            yield

    return lock
