"""
Email Verification Models

Persisted one-time codes. Records are never deleted: the issuance history
is what the per-(email, scene) rate limits count over.
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.config import VERIFICATION_CODE_MAX_LENGTH
from app.core.database import Base


class CodeScene(str, enum.Enum):
    """Business context a code is issued for."""

    REGISTER = "register"
    RESET_PASSWORD = "reset_password"


class CodeStatus(enum.IntEnum):
    """Lifecycle status of a verification code."""

    PENDING = 0
    CONSUMED = 1
    INVALIDATED = 2


class EmailVerificationCode(Base):
    """
    A verification code issued to an email address for one scene.

    At most one PENDING row exists per (email, scene).
    """

    __tablename__ = "email_verification_code"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Lower-cased, trimmed address
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(VERIFICATION_CODE_MAX_LENGTH), nullable=False)
    scene: Mapped[str] = mapped_column(String(50), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    try_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=CodeStatus.PENDING.value
    )

    # Set by the service clock so windows and ordering agree with it
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_email_verification_code_email_scene_created", "email", "scene", "created_at"),
    )
