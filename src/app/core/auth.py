"""
Authentication and Authorization Module

Every inbound request passes through ``AuthenticationMiddleware`` before it
reaches a router. The middleware asks ``RequestAuthenticator`` to turn the
``Authorization: Bearer <token>`` header into an ``AuthContext`` and stores it
on ``request.state.auth``. It never rejects a request: token problems simply
leave the context anonymous.

Authorization happens downstream through FastAPI dependencies:
- ``get_auth_context``: the call's context (possibly anonymous)
- ``get_current_principal``: 401 when no identity was established
- ``require_role``: 403 when the principal lacks the role
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from app.core.security import TokenService, TokenValidationError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Principal:
    """
    An authenticated identity.

    Attributes:
        username: Subject of the token
        roles: Role names held at lookup time (e.g. {"USER"}, {"ADMIN"})
        email: Bound email address, if any
    """

    username: str
    roles: frozenset[str] = field(default_factory=frozenset)
    email: str | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def __str__(self) -> str:
        return f"Principal(username={self.username}, roles={sorted(self.roles)})"


@dataclass(frozen=True)
class AuthContext:
    """Per-call authentication outcome; ``principal`` is None when anonymous."""

    principal: Principal | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None

    @classmethod
    def anonymous(cls) -> "AuthContext":
        return cls()


PrincipalLoader = Callable[[str], Awaitable[Principal | None]]


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from a ``Bearer`` header, or None if absent/malformed."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX) :].strip()
    return token or None


class RequestAuthenticator:
    """
    Resolves the caller's identity from a bearer token.

    Args:
        token_service: Verifies token signature and expiry
        load_principal: Looks up an identity by username (credential store)
    """

    def __init__(self, token_service: TokenService, load_principal: PrincipalLoader):
        self._token_service = token_service
        self._load_principal = load_principal

    async def authenticate(
        self,
        authorization: str | None,
        context: AuthContext | None = None,
    ) -> AuthContext:
        """
        Establish the call's identity.

        An identity already present in ``context`` is kept as is. Missing,
        malformed, forged or expired tokens yield an anonymous context.
        Errors from the identity lookup itself propagate.
        """
        context = context or AuthContext.anonymous()

        token = extract_bearer_token(authorization)
        if token is None:
            return context

        try:
            username = self._token_service.parse_subject(token)
        except TokenValidationError as e:
            logger.debug(f"Bearer token rejected: {e.kind.value}")
            return context

        if context.is_authenticated:
            return context

        principal = await self._load_principal(username)
        if principal is None or not self._token_service.validate(token):
            return context

        return AuthContext(principal=principal)


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Runs the authenticator before any route handler; never short-circuits."""

    def __init__(self, app: ASGIApp, authenticator: RequestAuthenticator):
        super().__init__(app)
        self._authenticator = authenticator

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        existing = getattr(request.state, "auth", None)
        request.state.auth = await self._authenticator.authenticate(
            request.headers.get("Authorization"),
            existing if isinstance(existing, AuthContext) else None,
        )
        return await call_next(request)


def get_auth_context(request: Request) -> AuthContext:
    """FastAPI dependency returning the context set by the middleware."""
    context = getattr(request.state, "auth", None)
    return context if isinstance(context, AuthContext) else AuthContext.anonymous()


def get_current_principal(context: AuthContext = Depends(get_auth_context)) -> Principal:
    """
    FastAPI dependency requiring an authenticated caller.

    Raises:
        HTTPException 401: If no identity was established for this request
    """
    if context.principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "NOT_AUTHENTICATED",
                "message": "Authentication is required.",
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
    return context.principal


def require_role(*roles: str) -> Callable[[Principal], Principal]:
    """
    Build a dependency that requires any of ``roles``.

    Usage:
        @router.get("/admin/users")
        async def list_users(admin: Principal = Depends(require_role("ADMIN"))):
            ...
    """
    required = _role_names(roles)

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not required & principal.roles:
            logger.warning(
                f"Access denied: {principal.username} has roles {sorted(principal.roles)}, "
                f"requires one of {sorted(required)}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "INSUFFICIENT_ROLE",
                    "message": "You do not have permission to access this resource.",
                },
            )
        return principal

    return dependency


def _role_names(roles: Iterable[str]) -> frozenset[str]:
    return frozenset(getattr(role, "value", role) for role in roles)


__all__ = [
    "AuthContext",
    "AuthenticationMiddleware",
    "Principal",
    "RequestAuthenticator",
    "extract_bearer_token",
    "get_auth_context",
    "get_current_principal",
    "require_role",
]
