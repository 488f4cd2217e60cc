"""
Fixtures for email verification tests.

``FakeCodeRepository`` keeps records in a list and mirrors the repository
module's async API so the service runs its real state machine against it.
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.modules.email_verification.models import CodeScene, CodeStatus
from app.modules.email_verification.records import VerificationCodeRecord
from app.modules.email_verification.service import VerificationPolicy, VerificationService


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeCodeRepository:
    def __init__(self):
        self.rows: list[VerificationCodeRecord] = []

    def records_for(self, email: str, scene: CodeScene) -> list[VerificationCodeRecord]:
        return [r for r in self.rows if r.email == email and r.scene is scene]

    def pending_for(self, email: str, scene: CodeScene) -> list[VerificationCodeRecord]:
        return [r for r in self.records_for(email, scene) if r.status is CodeStatus.PENDING]

    async def get_latest(self, db, email, scene):
        rows = self.records_for(email, scene)
        return max(rows, key=lambda r: (r.created_at, r.id)) if rows else None

    async def list_pending(self, db, email, scene):
        return self.pending_for(email, scene)

    async def count_issued_since(self, db, email, scene, since):
        return sum(1 for r in self.records_for(email, scene) if r.created_at >= since)

    async def insert(self, db, record):
        stored = replace(record, id=len(self.rows) + 1)
        self.rows.append(stored)
        return stored

    async def save(self, db, record):
        index = next(i for i, r in enumerate(self.rows) if r.id == record.id)
        self.rows[index] = record
        return record


@pytest.fixture
def clock():
    # 08:00 UTC leaves room for a full day of sends before midnight
    return FakeClock(datetime(2026, 10, 19, 8, 0, tzinfo=UTC))


@pytest.fixture
def code_repo():
    repo = FakeCodeRepository()
    with patch("app.modules.email_verification.service.repository", repo):
        yield repo


@pytest.fixture
def user_repo():
    """Credential store: only alice@example.com is registered."""
    with patch("app.modules.email_verification.service.UserRepository") as repo:
        repo.email_exists = AsyncMock(side_effect=lambda db, email: email == "alice@example.com")
        yield repo


@pytest.fixture
def mailer():
    mailer = MagicMock()
    mailer.send = AsyncMock(return_value=True)
    return mailer


@pytest.fixture
def codes():
    """Codes handed out by the service, in order."""
    return ["123456", "654321", "111111", "222222", "333333"]


@pytest.fixture
def make_service(mailer, clock, codes, code_repo, user_repo):
    def factory(policy: VerificationPolicy | None = None, **kwargs) -> VerificationService:
        queue = iter(codes + [f"{n:06d}" for n in range(100)])
        return VerificationService(
            mailer=mailer,
            policy=policy,
            clock=clock,
            code_generator=lambda length: next(queue),
            local_tz=UTC,
            **kwargs,
        )

    return factory


@pytest.fixture
def service(make_service):
    return make_service()
