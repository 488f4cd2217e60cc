"""
User Repository

Database operations for the credential store.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.users.models import User, UserRole

logger = logging.getLogger(__name__)


class UserRepository:
    """Repository for user database operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        username: str,
        password_hash: str,
        email: str | None = None,
        roles: set[UserRole] | None = None,
    ) -> User:
        """
        Create a new user record.

        Args:
            db: Database session
            username: Unique login name
            password_hash: Hashed password
            email: Lower-cased email address (optional)
            roles: Role set (defaults to {USER})

        Returns:
            Created User instance
        """
        role_names = sorted(role.value for role in (roles or {UserRole.USER}))
        user = User(
            username=username,
            password_hash=password_hash,
            email=email,
            roles=role_names,
        )

        db.add(user)
        await db.flush()
        await db.refresh(user)

        logger.info(f"Created user: {user.id} - {user.username} ({', '.join(role_names)})")
        return user

    @staticmethod
    async def get_by_username(db: AsyncSession, username: str) -> User | None:
        result = await db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    @staticmethod
    async def username_exists(db: AsyncSession, username: str) -> bool:
        return await UserRepository.get_by_username(db, username) is not None

    @staticmethod
    async def email_exists(db: AsyncSession, email: str) -> bool:
        """
        Check if an email address is already registered.

        Args:
            db: Database session
            email: Normalized email address

        Returns:
            True if email exists, False otherwise
        """
        return await UserRepository.get_by_email(db, email) is not None

    @staticmethod
    async def update_password(db: AsyncSession, user: User, password_hash: str) -> User:
        user.password_hash = password_hash
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def list_all(db: AsyncSession) -> list[User]:
        result = await db.execute(select(User).order_by(User.username))
        return list(result.scalars().all())
