"""
Verification Code Records

Immutable snapshots of a code record plus the transition functions that
produce the next snapshot. The service never mutates a record in place;
the repository persists whatever snapshot it is handed.

State machine:
    PENDING -> CONSUMED     (correct code submitted)
    PENDING -> INVALIDATED  (superseded, expired at verify time, too many tries)
    CONSUMED, INVALIDATED   terminal
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from app.modules.email_verification.models import CodeScene, CodeStatus

VALID_STATUS_TRANSITIONS: dict[CodeStatus, set[CodeStatus]] = {
    CodeStatus.PENDING: {CodeStatus.CONSUMED, CodeStatus.INVALIDATED},
    # Terminal states - no transitions allowed
    CodeStatus.CONSUMED: set(),
    CodeStatus.INVALIDATED: set(),
}


class InvalidStatusTransitionError(ValueError):
    """Raised when an invalid status transition is attempted."""

    def __init__(self, current_status: CodeStatus, new_status: CodeStatus):
        self.current_status = current_status
        self.new_status = new_status
        valid_transitions = VALID_STATUS_TRANSITIONS.get(current_status, set())
        super().__init__(
            f"Invalid status transition: {current_status.name} -> {new_status.name}. "
            f"Valid transitions: {sorted(s.name for s in valid_transitions)}"
        )


@dataclass(frozen=True)
class VerificationCodeRecord:
    """Snapshot of one issued code."""

    email: str
    code: str
    scene: CodeScene
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    attempts: int = 0
    status: CodeStatus = CodeStatus.PENDING
    id: int | None = None

    @property
    def is_pending(self) -> bool:
        return self.status is CodeStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def max_tries_reached(self, max_tries: int) -> bool:
        return self.attempts >= max_tries

    def remaining_attempts(self, max_tries: int) -> int:
        return max(0, max_tries - self.attempts)


def issue(
    email: str,
    scene: CodeScene,
    code: str,
    now: datetime,
    ttl: timedelta,
) -> VerificationCodeRecord:
    """A fresh PENDING record expiring ``ttl`` after ``now``."""
    return VerificationCodeRecord(
        email=email,
        code=code,
        scene=scene,
        expires_at=now + ttl,
        created_at=now,
        updated_at=now,
    )


def _transition(
    record: VerificationCodeRecord, status: CodeStatus, now: datetime
) -> VerificationCodeRecord:
    if status not in VALID_STATUS_TRANSITIONS[record.status]:
        raise InvalidStatusTransitionError(record.status, status)
    return replace(record, status=status, updated_at=now)


def invalidate(record: VerificationCodeRecord, now: datetime) -> VerificationCodeRecord:
    return _transition(record, CodeStatus.INVALIDATED, now)


def consume(record: VerificationCodeRecord, now: datetime) -> VerificationCodeRecord:
    return _transition(record, CodeStatus.CONSUMED, now)


def record_failed_attempt(record: VerificationCodeRecord, now: datetime) -> VerificationCodeRecord:
    """Count one wrong code against a PENDING record."""
    if not record.is_pending:
        raise InvalidStatusTransitionError(record.status, record.status)
    return replace(record, attempts=record.attempts + 1, updated_at=now)
