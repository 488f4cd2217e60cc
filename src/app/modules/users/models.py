"""
User Models

The credential store: username, password hash, optional email and role set.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class UserRole(str, Enum):
    """Roles an identity can hold."""

    USER = "USER"
    ADMIN = "ADMIN"


class User(Base):
    """
    Identity used for login and token subject lookup.

    ``username`` is unique and never changes after creation. ``email`` is
    optional but unique when present, and always stored lower-cased.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Authentication fields
    username: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, index=True, nullable=True)

    # Role names, e.g. ["USER"]
    roles: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=lambda: [UserRole.USER.value]
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, roles={self.roles})>"

    @property
    def role_set(self) -> frozenset[str]:
        return frozenset(self.roles or ())
