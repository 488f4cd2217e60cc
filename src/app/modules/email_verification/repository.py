"""
Email Verification Repository

Database operations for verification code records. Functions take and return
``VerificationCodeRecord`` snapshots; ORM rows never leave this module.

Nothing here commits: the service decides the transaction boundary so that
invalidating the previous code and inserting the new one land together.
"""

from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import CodeScene, CodeStatus, EmailVerificationCode
from .records import VerificationCodeRecord


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def to_record(row: EmailVerificationCode) -> VerificationCodeRecord:
    return VerificationCodeRecord(
        id=row.id,
        email=row.email,
        code=row.code,
        scene=CodeScene(row.scene),
        expires_at=_aware(row.expires_at),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        attempts=row.try_count,
        status=CodeStatus(row.status),
    )


async def get_latest(
    db: AsyncSession, email: str, scene: CodeScene
) -> VerificationCodeRecord | None:
    """Most recently issued record for (email, scene), whatever its status."""
    result = await db.execute(
        select(EmailVerificationCode)
        .where(
            EmailVerificationCode.email == email,
            EmailVerificationCode.scene == scene.value,
        )
        .order_by(EmailVerificationCode.created_at.desc(), EmailVerificationCode.id.desc())
        .limit(1)
    )
    row = result.scalar_one_or_none()
    return to_record(row) if row else None


async def list_pending(
    db: AsyncSession, email: str, scene: CodeScene
) -> list[VerificationCodeRecord]:
    result = await db.execute(
        select(EmailVerificationCode).where(
            EmailVerificationCode.email == email,
            EmailVerificationCode.scene == scene.value,
            EmailVerificationCode.status == CodeStatus.PENDING.value,
        )
    )
    return [to_record(row) for row in result.scalars().all()]


async def count_issued_since(
    db: AsyncSession, email: str, scene: CodeScene, since: datetime
) -> int:
    """Number of codes issued for (email, scene) at or after ``since``, any status."""
    result = await db.execute(
        select(func.count(EmailVerificationCode.id)).where(
            EmailVerificationCode.email == email,
            EmailVerificationCode.scene == scene.value,
            EmailVerificationCode.created_at >= since,
        )
    )
    return result.scalar_one()


async def insert(db: AsyncSession, record: VerificationCodeRecord) -> VerificationCodeRecord:
    row = EmailVerificationCode(
        email=record.email,
        code=record.code,
        scene=record.scene.value,
        expires_at=record.expires_at,
        try_count=record.attempts,
        status=record.status.value,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )
    db.add(row)
    await db.flush()
    await db.refresh(row)
    return to_record(row)


async def save(db: AsyncSession, record: VerificationCodeRecord) -> VerificationCodeRecord:
    """Persist the mutable fields (status, attempts, updated_at) of an existing record."""
    if record.id is None:
        raise ValueError("Cannot save a record that was never inserted")

    await db.execute(
        update(EmailVerificationCode)
        .where(EmailVerificationCode.id == record.id)
        .values(
            status=record.status.value,
            try_count=record.attempts,
            updated_at=record.updated_at,
        )
    )
    return record
