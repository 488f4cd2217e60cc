"""
Email Verification Service

Issues and checks one-time email codes for the ``register`` and
``reset_password`` scenes.

Business rejections are returned, not raised: every operation yields a
``VerificationResult`` whose ``failure`` names the rejection kind and whose
``api_code`` is what the HTTP layer reports. Only unexpected faults (database
down, lock timeout) propagate as exceptions.

Anti-abuse limits are count queries over the persisted code history per
(email, scene):
- at most one issuance per ``send_interval`` sliding window
- at most ``daily_limit`` issuances since local midnight

The check and the insert run under ``issue_lock`` (a Redis lock when Redis is
connected). Without Redis two concurrent sends for the same (email, scene)
can both pass the interval check.
"""

import contextlib
import hmac
import logging
import secrets
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta, tzinfo
from enum import Enum
from typing import Protocol

from email_validator import EmailNotValidError, validate_email
from fastapi import Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import VERIFICATION_CODE_MAX_LENGTH, Settings, settings
from app.core.email import get_mail_dispatcher, render_verification_code_email
from app.core.redis import get_redis, issue_lock_factory
from app.modules.users.repository import UserRepository
from app.modules.users.service import normalize_email

from . import records, repository
from .models import CodeScene

logger = logging.getLogger(__name__)


class VerificationFailure(str, Enum):
    """Rejection kinds for send/verify, each mapped to an API code."""

    # send
    INVALID_FORMAT = "INVALID_FORMAT"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    NOT_REGISTERED = "NOT_REGISTERED"
    RATE_LIMITED = "RATE_LIMITED"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    DELIVERY_FAILURE = "DELIVERY_FAILURE"
    # verify
    MISSING_INPUT = "MISSING_INPUT"
    CODE_MISMATCH = "CODE_MISMATCH"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    INVALIDATED = "INVALIDATED"
    MAX_TRIES_EXCEEDED = "MAX_TRIES_EXCEEDED"
    OTHER = "OTHER"

    @property
    def api_code(self) -> int:
        return _API_CODES[self]


_API_CODES: dict[VerificationFailure, int] = {
    VerificationFailure.INVALID_FORMAT: 1001,
    VerificationFailure.ALREADY_REGISTERED: 1002,
    VerificationFailure.RATE_LIMITED: 1003,
    VerificationFailure.DAILY_LIMIT_EXCEEDED: 1003,
    VerificationFailure.NOT_REGISTERED: 1004,
    VerificationFailure.DELIVERY_FAILURE: 1500,
    VerificationFailure.MISSING_INPUT: 2001,
    VerificationFailure.CODE_MISMATCH: 2001,
    VerificationFailure.NOT_FOUND: 2002,
    VerificationFailure.EXPIRED: 2002,
    VerificationFailure.INVALIDATED: 2003,
    VerificationFailure.MAX_TRIES_EXCEEDED: 2003,
    VerificationFailure.OTHER: 2004,
}

SEND_UNEXPECTED_ERROR_CODE = VerificationFailure.DELIVERY_FAILURE.api_code
VERIFY_UNEXPECTED_ERROR_CODE = VerificationFailure.OTHER.api_code


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a send or verify call; ``failure`` is None on success."""

    failure: VerificationFailure | None = None
    message: str = ""
    remaining_attempts: int | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def api_code(self) -> int:
        return 0 if self.failure is None else self.failure.api_code

    @classmethod
    def success(cls, message: str) -> "VerificationResult":
        return cls(message=message)

    @classmethod
    def reject(
        cls,
        failure: VerificationFailure,
        message: str,
        remaining_attempts: int | None = None,
    ) -> "VerificationResult":
        return cls(failure=failure, message=message, remaining_attempts=remaining_attempts)


@dataclass(frozen=True)
class VerificationPolicy:
    code_length: int = 6
    ttl: timedelta = timedelta(minutes=5)
    max_tries: int = 5
    send_interval: timedelta = timedelta(seconds=60)
    daily_limit: int = 10
    allowed_domains: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if not 1 <= self.code_length <= VERIFICATION_CODE_MAX_LENGTH:
            raise ValueError(
                f"code_length must be between 1 and {VERIFICATION_CODE_MAX_LENGTH}, got {self.code_length}"
            )

    @classmethod
    def from_settings(cls, config: Settings) -> "VerificationPolicy":
        return cls(
            code_length=config.verification_code_length,
            ttl=timedelta(minutes=config.verification_code_ttl_minutes),
            max_tries=config.verification_max_tries,
            send_interval=timedelta(seconds=config.verification_send_interval_seconds),
            daily_limit=config.verification_daily_limit,
            allowed_domains=frozenset(config.allowed_email_domains),
        )

    @property
    def ttl_minutes(self) -> int:
        return int(self.ttl.total_seconds() // 60)


class Mailer(Protocol):
    async def send(self, to_email: str, subject: str, html_content: str) -> bool: ...


IssueLock = Callable[[str, str], contextlib.AbstractAsyncContextManager[None]]


def generate_numeric_code(length: int = 6) -> str:
    """Uniformly random decimal code, leading zeros kept."""
    return str(secrets.randbelow(10**length)).zfill(length)


def start_of_local_day(now: datetime, tz: tzinfo | None = None) -> datetime:
    """Midnight of ``now``'s calendar day in ``tz`` (process local time when None), as UTC."""
    local = now.astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0).astimezone(UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@contextlib.asynccontextmanager
async def _no_lock(email: str, scene: str) -> AsyncIterator[None]:
    yield


class VerificationService:
    """
    Verification code lifecycle for one deployment.

    Args:
        mailer: Delivers the code email; returns False when every provider failed
        policy: Code length, expiry and anti-abuse limits
        clock: Returns the current UTC time
        code_generator: Produces a code of the requested length
        issue_lock: Async context manager factory keyed by (email, scene)
        local_tz: Timezone whose midnight starts the daily window
    """

    def __init__(
        self,
        mailer: Mailer,
        policy: VerificationPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
        code_generator: Callable[[int], str] = generate_numeric_code,
        issue_lock: IssueLock | None = None,
        local_tz: tzinfo | None = None,
    ):
        self._mailer = mailer
        self._policy = policy or VerificationPolicy()
        self._clock = clock
        self._generate_code = code_generator
        self._issue_lock = issue_lock or _no_lock
        self._local_tz = local_tz

    @property
    def policy(self) -> VerificationPolicy:
        return self._policy

    # ============================================
    # Send
    # ============================================

    def _check_format(self, email: str) -> VerificationResult | None:
        try:
            validate_email(email, check_deliverability=False)
        except EmailNotValidError:
            return VerificationResult.reject(
                VerificationFailure.INVALID_FORMAT, "Invalid email address format."
            )

        allowed = self._policy.allowed_domains
        if allowed and email.rsplit("@", 1)[1] not in allowed:
            return VerificationResult.reject(
                VerificationFailure.INVALID_FORMAT,
                f"Only {', '.join(sorted(allowed))} email addresses are supported.",
            )
        return None

    async def _check_registration(
        self, db: AsyncSession, email: str, scene: CodeScene
    ) -> VerificationResult | None:
        exists = await UserRepository.email_exists(db, email)
        if scene is CodeScene.REGISTER and exists:
            return VerificationResult.reject(
                VerificationFailure.ALREADY_REGISTERED, "This email is already registered."
            )
        if scene is CodeScene.RESET_PASSWORD and not exists:
            return VerificationResult.reject(
                VerificationFailure.NOT_REGISTERED, "This email is not registered."
            )
        return None

    async def _check_limits(
        self, db: AsyncSession, email: str, scene: CodeScene, now: datetime
    ) -> VerificationResult | None:
        interval = self._policy.send_interval
        recent = await repository.count_issued_since(db, email, scene, now - interval)
        if recent > 0:
            return VerificationResult.reject(
                VerificationFailure.RATE_LIMITED,
                f"Please wait {int(interval.total_seconds())} seconds before requesting another code.",
            )

        today = await repository.count_issued_since(
            db, email, scene, start_of_local_day(now, self._local_tz)
        )
        if today >= self._policy.daily_limit:
            return VerificationResult.reject(
                VerificationFailure.DAILY_LIMIT_EXCEEDED,
                "Daily verification code limit reached, please try again tomorrow.",
            )
        return None

    async def send_code(
        self, db: AsyncSession, email: str | None, scene: CodeScene
    ) -> VerificationResult:
        """
        Issue a new code for (email, scene) and mail it.

        The previous PENDING code is invalidated in the same transaction as
        the insert. A delivery failure is reported but the new code stays
        persisted.
        """
        email = normalize_email(email)

        rejection = self._check_format(email) or await self._check_registration(db, email, scene)
        if rejection:
            logger.warning(f"Code send rejected for {email} ({scene.value}): {rejection.failure.value}")
            return rejection

        async with self._issue_lock(email, scene.value):
            now = self._clock()
            rejection = await self._check_limits(db, email, scene, now)
            if rejection:
                logger.warning(
                    f"Code send rejected for {email} ({scene.value}): {rejection.failure.value}"
                )
                return rejection

            code = self._generate_code(self._policy.code_length)
            for pending in await repository.list_pending(db, email, scene):
                await repository.save(db, records.invalidate(pending, now))
            await repository.insert(
                db, records.issue(email, scene, code, now, self._policy.ttl)
            )
            await db.commit()

        subject, html_content = render_verification_code_email(
            code, scene.value, self._policy.ttl_minutes
        )
        if not await self._mailer.send(email, subject, html_content):
            logger.error(f"Verification code for {email} ({scene.value}) persisted but not delivered")
            return VerificationResult.reject(
                VerificationFailure.DELIVERY_FAILURE,
                "Failed to send verification email, please try again later.",
            )

        logger.info(f"Verification code issued for {email} ({scene.value})")
        return VerificationResult.success("Verification code sent.")

    # ============================================
    # Verify
    # ============================================

    async def verify_code(
        self,
        db: AsyncSession,
        email: str | None,
        code: str | None,
        scene: CodeScene,
    ) -> VerificationResult:
        """
        Check a submitted code against the newest record for (email, scene).

        A correct code consumes the record, so it can succeed at most once.
        """
        email = normalize_email(email)
        code = (code or "").strip()
        if not email or not code:
            return VerificationResult.reject(
                VerificationFailure.MISSING_INPUT, "Email and verification code are required."
            )

        record = await repository.get_latest(db, email, scene)
        if record is None:
            return VerificationResult.reject(
                VerificationFailure.NOT_FOUND, "No verification code found, please request one."
            )

        if not record.is_pending:
            return VerificationResult.reject(
                VerificationFailure.INVALIDATED,
                "This verification code is no longer valid, please request a new one.",
            )

        now = self._clock()
        max_tries = self._policy.max_tries

        if record.is_expired(now):
            await repository.save(db, records.invalidate(record, now))
            await db.commit()
            return VerificationResult.reject(
                VerificationFailure.EXPIRED, "Verification code has expired, please request a new one."
            )

        if record.max_tries_reached(max_tries):
            await repository.save(db, records.invalidate(record, now))
            await db.commit()
            logger.warning(f"Verification code for {email} ({scene.value}) locked after {max_tries} tries")
            return VerificationResult.reject(
                VerificationFailure.MAX_TRIES_EXCEEDED,
                "Too many incorrect attempts, please request a new code.",
                remaining_attempts=0,
            )

        if not hmac.compare_digest(code.encode(), record.code.encode()):
            failed = await repository.save(db, records.record_failed_attempt(record, now))
            await db.commit()
            remaining = failed.remaining_attempts(max_tries)
            return VerificationResult.reject(
                VerificationFailure.CODE_MISMATCH,
                f"Incorrect verification code, {remaining} attempts remaining.",
                remaining_attempts=remaining,
            )

        await repository.save(db, records.consume(record, now))
        await db.commit()
        logger.info(f"Verification code consumed for {email} ({scene.value})")
        return VerificationResult.success("Verification succeeded.")


def get_verification_service(redis: Redis | None = Depends(get_redis)) -> VerificationService:
    """FastAPI dependency wiring the service to settings, mail and the Redis lock."""
    return VerificationService(
        mailer=get_mail_dispatcher(),
        policy=VerificationPolicy.from_settings(settings),
        issue_lock=issue_lock_factory(redis),
    )
