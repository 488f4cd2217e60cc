"""
User Service Layer

Registration, credential checks, password reset and the bootstrap admin.

Login failures are deliberately indistinguishable: an unknown username and
a wrong password raise the same InvalidCredentialsError with the same
message, and both paths run a bcrypt comparison.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal
from app.core.security import hash_password, verify_password
from app.modules.users.models import User, UserRole
from app.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid username or password."

# Compared against when the username is unknown so both failure paths cost a bcrypt check
_DUMMY_PASSWORD_HASH = hash_password("not-a-real-password")


def normalize_email(email: str | None) -> str:
    """Trim and lower-case an email address."""
    return (email or "").strip().lower()


class UserServiceError(Exception):
    """Base exception for user service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class DuplicateUsernameError(UserServiceError):
    """Raised when registering a username that is already taken."""

    def __init__(self):
        super().__init__(
            message="Username already exists.",
            error_code="DUPLICATE_USERNAME",
        )


class EmailAlreadyRegisteredError(UserServiceError):
    """Raised when the email is already bound to another identity."""

    def __init__(self):
        super().__init__(
            message="This email is already registered.",
            error_code="EMAIL_ALREADY_REGISTERED",
        )


class EmailNotRegisteredError(UserServiceError):
    """Raised when no identity is bound to the email."""

    def __init__(self):
        super().__init__(
            message="This email is not registered.",
            error_code="EMAIL_NOT_REGISTERED",
        )


class PasswordPolicyError(UserServiceError):
    """Raised when a new password violates the password policy."""

    def __init__(self, min_length: int):
        super().__init__(
            message=f"Password must be at least {min_length} characters.",
            error_code="PASSWORD_TOO_SHORT",
        )


class InvalidCredentialsError(UserServiceError):
    """Raised on any login failure."""

    def __init__(self):
        super().__init__(
            message=INVALID_CREDENTIALS_MESSAGE,
            error_code="INVALID_CREDENTIALS",
            status_code=401,
        )


def check_password_policy(password: str | None, min_length: int) -> None:
    if password is None or len(password) < min_length:
        raise PasswordPolicyError(min_length)


def to_principal(user: User) -> Principal:
    return Principal(username=user.username, roles=user.role_set, email=user.email)


async def register(
    db: AsyncSession,
    username: str,
    password: str,
    email: str | None = None,
) -> User:
    """
    Register a new identity with the default {USER} role.

    Raises:
        DuplicateUsernameError: If the username is taken
        EmailAlreadyRegisteredError: If the email is bound to another identity
    """
    username = username.strip()
    normalized_email = normalize_email(email) or None

    if await UserRepository.username_exists(db, username):
        logger.warning(f"Registration rejected, username taken: {username}")
        raise DuplicateUsernameError()

    if normalized_email and await UserRepository.email_exists(db, normalized_email):
        logger.warning(f"Registration rejected, email taken: {normalized_email}")
        raise EmailAlreadyRegisteredError()

    user = await UserRepository.create(
        db,
        username=username,
        password_hash=hash_password(password),
        email=normalized_email,
        roles={UserRole.USER},
    )
    await db.commit()
    return user


async def authenticate(db: AsyncSession, username: str, password: str) -> User:
    """
    Check a username/password pair.

    Raises:
        InvalidCredentialsError: Unknown username or wrong password (same error)
    """
    user = await UserRepository.get_by_username(db, username)

    if user is None:
        verify_password(password, _DUMMY_PASSWORD_HASH)
        logger.warning(f"Login attempt for non-existent username: {username}")
        raise InvalidCredentialsError()

    if not verify_password(password, user.password_hash):
        logger.warning(f"Invalid password for user: {username}")
        raise InvalidCredentialsError()

    return user


async def reset_password(
    db: AsyncSession,
    email: str,
    new_password: str,
    min_length: int = 6,
) -> User:
    """
    Replace the password of the identity bound to ``email``.

    The caller is responsible for having verified an email code first.

    Raises:
        PasswordPolicyError: If the new password is too short
        EmailNotRegisteredError: If no identity has this email
    """
    check_password_policy(new_password, min_length)

    user = await UserRepository.get_by_email(db, normalize_email(email))
    if user is None:
        raise EmailNotRegisteredError()

    await UserRepository.update_password(db, user, hash_password(new_password))
    await db.commit()

    logger.info(f"Password reset for user: {user.username}")
    return user


async def ensure_admin_exists(db: AsyncSession, username: str, password: str) -> bool:
    """
    Create the bootstrap admin if it does not exist yet.

    Never touches an existing account's password or roles.

    Returns:
        True if the admin was created, False if it already existed
    """
    if await UserRepository.username_exists(db, username):
        return False

    await UserRepository.create(
        db,
        username=username,
        password_hash=hash_password(password),
        roles={UserRole.ADMIN},
    )
    await db.commit()
    logger.info(f"Bootstrap admin created: {username}")
    return True


async def load_principal(db: AsyncSession, username: str) -> Principal | None:
    """Look up an identity for the request authenticator."""
    user = await UserRepository.get_by_username(db, username)
    return to_principal(user) if user else None
