"""
Seed Admin User

Creates the bootstrap admin (ADMIN_USERNAME / ADMIN_PASSWORD) if it does not
exist. The API does the same on startup when BOOTSTRAP_ADMIN_ENABLED is set;
this script is for deployments that turn that off.

Usage:
    python scripts/seed_admin.py
"""

import asyncio
import sys
from pathlib import Path

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from app.core.config import settings
from app.core.database import async_session_maker, close_db
from app.modules.users import service as users
from app.modules.users.repository import UserRepository


async def seed_admin() -> None:
    """Create the admin user if it doesn't exist."""
    async with async_session_maker() as db:
        created = await users.ensure_admin_exists(
            db, settings.admin_username, settings.admin_password
        )
        admin = await UserRepository.get_by_username(db, settings.admin_username)

    if created:
        print("Admin created successfully!")
    else:
        print(f"Admin already exists: {settings.admin_username}")
    if admin:
        print(f"  ID: {admin.id}")
        print(f"  Roles: {', '.join(admin.roles)}")

    await close_db()


if __name__ == "__main__":
    asyncio.run(seed_admin())
