"""
Shared test configuration.

Environment is pinned before any ``app`` import so the cached settings,
the engine and the token service are built for tests: in-memory SQLite,
a fixed signing secret, no mail providers and no bootstrap admin.
"""

import os

os.environ.setdefault("PYTHON_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-signing-secret-with-at-least-32-bytes")
os.environ.setdefault("BOOTSTRAP_ADMIN_ENABLED", "false")
os.environ.setdefault("MAIL_PROVIDERS", "")

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402

from app.core.rate_limit import reset_memory_store  # noqa: E402


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture(autouse=True)
def clear_rate_limits():
    """Each test starts with an empty in-memory limiter."""
    reset_memory_store()
    yield
    reset_memory_store()
