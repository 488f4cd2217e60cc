"""
Rate Limiting Module

Per-client request limiting for sensitive endpoints (login brute force).
Uses the shared Redis client when connected and falls back to in-memory
storage otherwise.

Verification-code issuance is NOT limited here: its per-(email, scene)
windows are count queries over persisted code history, enforced by the
email verification service.
"""

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any

from fastapi import HTTPException, Request, status

from app.core import redis as redis_state

logger = logging.getLogger(__name__)

# In-memory rate limit storage (fallback when Redis unavailable)
# Format: {key: [timestamp, ...]}
_memory_store: dict[str, list[float]] = {}
# Instant after which every hit of a key is outside its window
_memory_expires: dict[str, float] = {}


class RateLimitExceeded(HTTPException):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, limit: int, window_seconds: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "RATE_LIMIT_EXCEEDED",
                "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                "retry_after_seconds": window_seconds,
            },
            headers={"Retry-After": str(window_seconds)},
        )


async def _check_rate_limit_redis(client, key: str, limit: int, window_seconds: int) -> bool:
    """
    Sliding window check using a Redis sorted set.

    Returns:
        True if request is allowed, False if rate limit exceeded
    """
    now = time.time()
    window_start = now - window_seconds

    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, window_start)
    pipe.zcard(key)
    pipe.zadd(key, {str(now): now})
    pipe.expire(key, window_seconds)

    results = await pipe.execute()
    current_count = results[1]

    return current_count < limit


def _check_rate_limit_memory(key: str, limit: int, window_seconds: int) -> bool:
    """
    Sliding window check in process memory.

    Note: This doesn't work across multiple server instances.
    """
    now = time.time()
    window_start = now - window_seconds
    _evict_expired(now)

    hits = [ts for ts in _memory_store.get(key, []) if ts > window_start]
    if len(hits) >= limit:
        if hits:
            _memory_store[key] = hits
        else:
            _memory_store.pop(key, None)
        return False

    hits.append(now)
    _memory_store[key] = hits
    _memory_expires[key] = now + window_seconds
    return True


def _evict_expired(now: float) -> None:
    """Drop keys whose hits have all left their window."""
    for key in [k for k, expires in _memory_expires.items() if expires <= now]:
        _memory_store.pop(key, None)
        _memory_expires.pop(key, None)


def reset_memory_store() -> None:
    """Clear the in-memory fallback (tests)."""
    _memory_store.clear()
    _memory_expires.clear()


async def check_rate_limit(key: str, limit: int, window_seconds: int) -> bool:
    """
    Check if a request is within rate limits.

    Tries Redis first, falls back to in-memory storage.
    """
    client = redis_state.redis_client
    if client is not None:
        try:
            return await _check_rate_limit_redis(client, key, limit, window_seconds)
        except Exception as e:
            logger.warning(f"Redis rate limit check failed, using memory: {e}")

    return _check_rate_limit_memory(key, limit, window_seconds)


def client_ip_key(request: Request) -> str:
    client_ip = request.client.host if request.client else "unknown"
    return f"rate_limit:{client_ip}:{request.url.path}"


def rate_limit(
    limit: int | Callable[[], int] = 10,
    window_seconds: int | Callable[[], int] = 60,
    key_func: Callable[[Request], str] | None = None,
):
    """
    Rate limiting decorator for FastAPI endpoints.

    Usage:
        @router.post("/login")
        @rate_limit(limit=10, window_seconds=60)
        async def login(request: Request, ...):
            ...

    ``limit`` and ``window_seconds`` may be callables so they are read from
    settings at request time.

    Raises:
        RateLimitExceeded: When rate limit is exceeded (HTTP 429)
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            request: Request | None = kwargs.get("request")
            if request is None:
                request = next((arg for arg in args if isinstance(arg, Request)), None)

            if request is None:
                logger.warning(
                    f"Rate limit decorator on {func.__name__} couldn't find Request object"
                )
                return await func(*args, **kwargs)

            max_requests = limit() if callable(limit) else limit
            window = window_seconds() if callable(window_seconds) else window_seconds
            key = key_func(request) if key_func else client_ip_key(request)

            if not await check_rate_limit(key, max_requests, window):
                logger.warning(f"Rate limit exceeded for {key}: {max_requests}/{window}s")
                raise RateLimitExceeded(max_requests, window)

            return await func(*args, **kwargs)

        return wrapper

    return decorator


__all__ = [
    "RateLimitExceeded",
    "check_rate_limit",
    "client_ip_key",
    "rate_limit",
    "reset_memory_store",
]
