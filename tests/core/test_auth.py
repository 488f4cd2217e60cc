"""
Unit tests for the request authenticator and authorization dependencies.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException

from app.core.auth import (
    AuthContext,
    Principal,
    RequestAuthenticator,
    extract_bearer_token,
    get_current_principal,
    require_role,
)
from app.core.security import TokenService

ALICE = Principal(username="alice", roles=frozenset({"USER"}), email="alice@example.com")
ADMIN = Principal(username="admin", roles=frozenset({"ADMIN"}))


@pytest.fixture
def tokens():
    return TokenService("s" * 40)


@pytest.fixture
def loader():
    return AsyncMock(return_value=ALICE)


@pytest.fixture
def authenticator(tokens, loader):
    return RequestAuthenticator(tokens, loader)


class TestExtractBearerToken:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("Bearer   abc ", "abc"),
            (None, None),
            ("", None),
            ("Bearer ", None),
            ("Basic dXNlcjpwYXNz", None),
            ("bearer abc", None),
        ],
    )
    def test_extract(self, header, expected):
        assert extract_bearer_token(header) == expected


class TestRequestAuthenticator:
    @pytest.mark.asyncio
    async def test_missing_header_stays_anonymous(self, authenticator, loader):
        context = await authenticator.authenticate(None)
        assert not context.is_authenticated
        loader.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_bearer_header_stays_anonymous(self, authenticator, loader):
        context = await authenticator.authenticate("Basic dXNlcjpwYXNz")
        assert not context.is_authenticated
        loader.assert_not_called()

    @pytest.mark.asyncio
    async def test_garbage_token_stays_anonymous(self, authenticator, loader):
        context = await authenticator.authenticate("Bearer not-a-token")
        assert not context.is_authenticated
        loader.assert_not_called()

    @pytest.mark.asyncio
    async def test_valid_token_establishes_principal(self, authenticator, tokens, loader):
        token = tokens.issue("alice", ["USER"])
        context = await authenticator.authenticate(f"Bearer {token}")
        assert context.principal == ALICE
        loader.assert_awaited_once_with("alice")

    @pytest.mark.asyncio
    async def test_unknown_subject_stays_anonymous(self, authenticator, tokens, loader):
        loader.return_value = None
        token = tokens.issue("ghost")
        context = await authenticator.authenticate(f"Bearer {token}")
        assert not context.is_authenticated

    @pytest.mark.asyncio
    async def test_expired_token_stays_anonymous(self, loader):
        tokens = TokenService("s" * 40, validity=timedelta(seconds=-1))
        authenticator = RequestAuthenticator(tokens, loader)
        context = await authenticator.authenticate(f"Bearer {tokens.issue('alice')}")
        assert not context.is_authenticated
        loader.assert_not_called()

    @pytest.mark.asyncio
    async def test_token_from_other_key_stays_anonymous(self, authenticator, loader):
        forged = TokenService("x" * 40).issue("admin", ["ADMIN"])
        context = await authenticator.authenticate(f"Bearer {forged}")
        assert not context.is_authenticated
        loader.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_identity_is_kept(self, authenticator, tokens, loader):
        existing = AuthContext(principal=ADMIN)
        token = tokens.issue("alice")
        context = await authenticator.authenticate(f"Bearer {token}", existing)
        assert context is existing
        loader.assert_not_called()

    @pytest.mark.asyncio
    async def test_roles_come_from_credential_store(self, authenticator, tokens, loader):
        """Role snapshot in the token is informational; the store decides."""
        loader.return_value = ADMIN
        token = tokens.issue("admin", ["USER"])
        context = await authenticator.authenticate(f"Bearer {token}")
        assert context.principal.has_role("ADMIN")

    @pytest.mark.asyncio
    async def test_lookup_errors_propagate(self, authenticator, tokens, loader):
        loader.side_effect = RuntimeError("database down")
        with pytest.raises(RuntimeError):
            await authenticator.authenticate(f"Bearer {tokens.issue('alice')}")


class TestAuthorizationDependencies:
    def test_current_principal_requires_identity(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_principal(AuthContext.anonymous())
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail["error"] == "NOT_AUTHENTICATED"

    def test_current_principal_returns_identity(self):
        assert get_current_principal(AuthContext(principal=ALICE)) is ALICE

    def test_require_role_rejects_missing_role(self):
        dependency = require_role("ADMIN")
        with pytest.raises(HTTPException) as exc_info:
            dependency(ALICE)
        assert exc_info.value.status_code == 403
        assert exc_info.value.detail["error"] == "INSUFFICIENT_ROLE"

    def test_require_role_accepts_any_listed_role(self):
        dependency = require_role("ADMIN", "USER")
        assert dependency(ALICE) is ALICE
        assert dependency(ADMIN) is ADMIN
