"""
Security Utilities

Password hashing (bcrypt) and stateless JWT issuance/validation.

Tokens are compact HS256 JWS values carrying ``sub`` (username), ``iat``,
``exp`` and an optional ``roles`` snapshot. Nothing is stored server-side:
expiry is the only way a token stops being valid.

SECURITY NOTE:
- The signing key is resolved once per process. When JWT_SECRET is missing
  or shorter than 32 bytes an ephemeral random key is generated and a
  warning is logged. Tokens signed with an ephemeral key stop verifying
  after a restart. Always set a strong JWT_SECRET outside development.
"""

import enum
import logging
import secrets
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache

import bcrypt
from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from app.core.config import settings

logger = logging.getLogger(__name__)

# Bcrypt limit is 72 bytes; truncate to avoid errors
BCRYPT_MAX_PASSWORD_BYTES = 72

# HS256 requires a key of at least 256 bits
MIN_SIGNING_KEY_BYTES = 32

SUPPORTED_ALGORITHMS = {"HS256", "HS384", "HS512"}


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    pwd_bytes = password.encode("utf-8")[:BCRYPT_MAX_PASSWORD_BYTES]
    return bcrypt.hashpw(pwd_bytes, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a plain password against a bcrypt hash."""
    pwd_bytes = plain_password.encode("utf-8")[:BCRYPT_MAX_PASSWORD_BYTES]
    try:
        return bcrypt.checkpw(pwd_bytes, hashed_password.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


class TokenErrorKind(str, enum.Enum):
    """Why a token was rejected."""

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"


class TokenValidationError(Exception):
    """Raised when a token cannot be parsed, verified, or has expired."""

    def __init__(self, kind: TokenErrorKind, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims extracted from a token."""

    subject: str
    issued_at: datetime
    expires_at: datetime
    roles: tuple[str, ...] = ()


def _utcnow() -> datetime:
    return datetime.now(UTC)


def resolve_signing_key(secret: str | None) -> tuple[bytes, bool]:
    """
    Resolve the HMAC signing key from the configured secret.

    Returns:
        Tuple of (key bytes, is_ephemeral)
    """
    secret = (secret or "").strip()
    if not secret:
        logger.warning(
            "JWT_SECRET is not set - generated an ephemeral signing key. "
            "Tokens will not survive a restart; set JWT_SECRET in production."
        )
        return secrets.token_bytes(MIN_SIGNING_KEY_BYTES), True

    key = secret.encode("utf-8")
    if len(key) < MIN_SIGNING_KEY_BYTES:
        logger.warning(
            f"JWT_SECRET is too weak ({len(key)} bytes, need at least "
            f"{MIN_SIGNING_KEY_BYTES}) - generated an ephemeral signing key instead."
        )
        return secrets.token_bytes(MIN_SIGNING_KEY_BYTES), True

    return key, False


class TokenService:
    """
    Issues and validates signed, time-bounded identity tokens.

    Args:
        secret: Configured signing secret (may be empty)
        validity: Token lifetime
        algorithm: HMAC variant (HS256 by default)
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        secret: str | None,
        validity: timedelta = timedelta(hours=24),
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utcnow,
    ):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported signing algorithm: {algorithm}")
        self._key, self.ephemeral_key = resolve_signing_key(secret)
        self._validity = validity
        self._algorithm = algorithm
        self._clock = clock
        logger.info(f"JWT signing key initialized (algorithm: {algorithm})")

    @property
    def validity(self) -> timedelta:
        return self._validity

    def issue(self, subject: str, roles: Iterable[str] = ()) -> str:
        """Create a signed token for ``subject`` with an optional role snapshot."""
        issued_at = int(self._clock().timestamp())
        claims: dict = {
            "sub": subject,
            "iat": issued_at,
            "exp": issued_at + int(self._validity.total_seconds()),
        }
        role_names = sorted(set(roles))
        if role_names:
            claims["roles"] = role_names
        return jwt.encode(claims, self._key, algorithm=self._algorithm)

    def parse(self, token: str) -> TokenClaims:
        """
        Verify a token and return its claims.

        Fails closed: anything that goes wrong while decoding is reported
        as a TokenValidationError, never as an unexpected exception.

        Raises:
            TokenValidationError: MALFORMED, BAD_SIGNATURE or EXPIRED
        """
        if not token or not isinstance(token, str):
            raise TokenValidationError(TokenErrorKind.MALFORMED, "empty token")

        try:
            jwt.get_unverified_claims(token)
        except JWTError as e:
            raise TokenValidationError(TokenErrorKind.MALFORMED, str(e)) from e

        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTClaimsError as e:
            raise TokenValidationError(TokenErrorKind.MALFORMED, str(e)) from e
        except JWTError as e:
            raise TokenValidationError(TokenErrorKind.BAD_SIGNATURE, str(e)) from e
        except Exception as e:
            raise TokenValidationError(TokenErrorKind.MALFORMED, str(e)) from e

        subject = payload.get("sub")
        exp = payload.get("exp")
        iat = payload.get("iat", exp)
        if not isinstance(subject, str) or not subject:
            raise TokenValidationError(TokenErrorKind.MALFORMED, "missing 'sub' claim")
        if not isinstance(exp, int | float) or not isinstance(iat, int | float):
            raise TokenValidationError(TokenErrorKind.MALFORMED, "missing 'exp' claim")

        expires_at = datetime.fromtimestamp(exp, tz=UTC)
        if self._clock() >= expires_at:
            raise TokenValidationError(TokenErrorKind.EXPIRED, "token has expired")

        roles = payload.get("roles") or []
        return TokenClaims(
            subject=subject,
            issued_at=datetime.fromtimestamp(iat, tz=UTC),
            expires_at=expires_at,
            roles=tuple(str(role) for role in roles) if isinstance(roles, list) else (),
        )

    def parse_subject(self, token: str) -> str:
        """Return the token's subject, raising TokenValidationError on any failure."""
        return self.parse(token).subject

    def validate(self, token: str) -> bool:
        """True iff the signature verifies and the token has not expired."""
        try:
            self.parse(token)
        except TokenValidationError as e:
            logger.debug(f"JWT validation failed: {e}")
            return False
        return True


@lru_cache
def get_token_service() -> TokenService:
    """Process-wide token service; the signing key is resolved on first use."""
    return TokenService(
        secret=settings.jwt_secret,
        validity=timedelta(minutes=settings.jwt_expiration_minutes),
        algorithm=settings.jwt_algorithm,
    )
