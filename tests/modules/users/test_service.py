"""
Unit tests for the users service layer.

These tests cover:
- Registration (duplicates, email normalization)
- Login credential checks (no username/password oracle)
- Password reset and policy
- Bootstrap admin idempotency
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.security import hash_password
from app.modules.users.models import UserRole
from app.modules.users.service import (
    DuplicateUsernameError,
    EmailAlreadyRegisteredError,
    EmailNotRegisteredError,
    InvalidCredentialsError,
    PasswordPolicyError,
    authenticate,
    ensure_admin_exists,
    load_principal,
    normalize_email,
    register,
    reset_password,
)


def make_user(username="alice", password="secret123", email="alice@example.com", roles=None):
    user = MagicMock()
    user.username = username
    user.password_hash = hash_password(password)
    user.email = email
    user.roles = roles or ["USER"]
    user.role_set = frozenset(user.roles)
    return user


@pytest.fixture
def mock_repo():
    with patch("app.modules.users.service.UserRepository") as repo:
        repo.username_exists = AsyncMock(return_value=False)
        repo.email_exists = AsyncMock(return_value=False)
        repo.get_by_username = AsyncMock(return_value=None)
        repo.get_by_email = AsyncMock(return_value=None)
        repo.create = AsyncMock(side_effect=lambda db, **kwargs: make_user(
            username=kwargs["username"], email=kwargs.get("email")
        ))
        repo.update_password = AsyncMock()
        yield repo


def test_normalize_email():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
    assert normalize_email(None) == ""


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_creates_user_with_default_role(self, mock_db, mock_repo):
        await register(mock_db, " alice ", "secret123", " Alice@Example.com ")

        kwargs = mock_repo.create.call_args.kwargs
        assert kwargs["username"] == "alice"
        assert kwargs["email"] == "alice@example.com"
        assert kwargs["roles"] == {UserRole.USER}
        assert kwargs["password_hash"] != "secret123"
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_register_without_email(self, mock_db, mock_repo):
        await register(mock_db, "bob", "secret123", "  ")
        assert mock_repo.create.call_args.kwargs["email"] is None
        mock_repo.email_exists.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_username_rejected(self, mock_db, mock_repo):
        mock_repo.username_exists.return_value = True
        with pytest.raises(DuplicateUsernameError) as exc_info:
            await register(mock_db, "alice", "secret123")
        assert exc_info.value.status_code == 400
        mock_repo.create.assert_not_called()
        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, mock_db, mock_repo):
        mock_repo.email_exists.return_value = True
        with pytest.raises(EmailAlreadyRegisteredError):
            await register(mock_db, "alice", "secret123", "alice@example.com")
        mock_repo.create.assert_not_called()


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_correct_password(self, mock_db, mock_repo):
        user = make_user()
        mock_repo.get_by_username.return_value = user
        assert await authenticate(mock_db, "alice", "secret123") is user

    @pytest.mark.asyncio
    async def test_unknown_user_and_wrong_password_are_indistinguishable(self, mock_db, mock_repo):
        mock_repo.get_by_username.return_value = None
        with pytest.raises(InvalidCredentialsError) as ghost:
            await authenticate(mock_db, "ghost", "whatever")

        mock_repo.get_by_username.return_value = make_user()
        with pytest.raises(InvalidCredentialsError) as wrong:
            await authenticate(mock_db, "alice", "wrong-password")

        assert ghost.value.message == wrong.value.message
        assert ghost.value.error_code == wrong.value.error_code
        assert ghost.value.status_code == wrong.value.status_code == 401


class TestResetPassword:
    @pytest.mark.asyncio
    async def test_reset_updates_hash(self, mock_db, mock_repo):
        user = make_user()
        mock_repo.get_by_email.return_value = user

        await reset_password(mock_db, " Alice@Example.com", "newpass1")

        mock_repo.get_by_email.assert_awaited_once_with(mock_db, "alice@example.com")
        new_hash = mock_repo.update_password.call_args.args[2]
        assert new_hash != "newpass1"
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, mock_db, mock_repo):
        with pytest.raises(PasswordPolicyError):
            await reset_password(mock_db, "alice@example.com", "12345")
        mock_repo.get_by_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_email_rejected(self, mock_db, mock_repo):
        with pytest.raises(EmailNotRegisteredError):
            await reset_password(mock_db, "nobody@example.com", "newpass1")
        mock_repo.update_password.assert_not_called()


class TestBootstrapAdmin:
    @pytest.mark.asyncio
    async def test_creates_admin_when_absent(self, mock_db, mock_repo):
        assert await ensure_admin_exists(mock_db, "admin", "admin123") is True
        assert mock_repo.create.call_args.kwargs["roles"] == {UserRole.ADMIN}

    @pytest.mark.asyncio
    async def test_existing_admin_left_untouched(self, mock_db, mock_repo):
        mock_repo.username_exists.return_value = True
        assert await ensure_admin_exists(mock_db, "admin", "admin123") is False
        mock_repo.create.assert_not_called()
        mock_db.commit.assert_not_called()


class TestLoadPrincipal:
    @pytest.mark.asyncio
    async def test_maps_user_to_principal(self, mock_db, mock_repo):
        mock_repo.get_by_username.return_value = make_user(roles=["ADMIN", "USER"])
        principal = await load_principal(mock_db, "alice")
        assert principal.username == "alice"
        assert principal.roles == frozenset({"ADMIN", "USER"})
        assert principal.email == "alice@example.com"

    @pytest.mark.asyncio
    async def test_unknown_user(self, mock_db, mock_repo):
        assert await load_principal(mock_db, "ghost") is None
