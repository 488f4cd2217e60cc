"""
Email Verification Module

One-time email codes gating registration and password reset.
"""

from app.modules.email_verification.models import CodeScene, CodeStatus, EmailVerificationCode

__all__ = ["CodeScene", "CodeStatus", "EmailVerificationCode"]
