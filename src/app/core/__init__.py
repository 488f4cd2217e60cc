"""
Core module - Configuration, database, security, and utilities.
"""

from app.core.config import get_settings, settings
from app.core.database import Base, close_db, get_db, init_db
from app.core.redis import close_redis, get_redis, init_redis
from app.core.security import (
    TokenService,
    TokenValidationError,
    get_token_service,
    hash_password,
    verify_password,
)

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Redis
    "get_redis",
    "init_redis",
    "close_redis",
    # Security
    "hash_password",
    "verify_password",
    "TokenService",
    "TokenValidationError",
    "get_token_service",
]
