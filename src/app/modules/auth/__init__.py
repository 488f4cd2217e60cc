"""Authentication module."""

from app.modules.auth.router import router

__all__ = ["router"]
