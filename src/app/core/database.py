"""
Database Configuration

Async SQLAlchemy engine, session factory and declarative base.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a database session.

    Rolls back on error so a failed request never leaves a
    half-applied transaction on the connection.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Verify the database connection.

    Creates tables when AUTO_CREATE_TABLES is enabled (local development);
    otherwise the schema is managed by Alembic.
    """
    # Register models on the metadata
    from app.modules.email_verification import models as _verification_models  # noqa: F401
    from app.modules.users import models as _user_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        if settings.auto_create_tables:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine's connection pool."""
    await engine.dispose()
