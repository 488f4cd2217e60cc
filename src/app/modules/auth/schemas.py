"""Authentication schemas."""

from pydantic import BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    """Register request schema."""

    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=128)
    email: str | None = Field(None, max_length=255)


class LoginRequest(BaseModel):
    """Login request schema."""

    username: str
    password: str


class LoginResponse(BaseModel):
    """Login response schema."""

    token: str


class ResetPasswordRequest(BaseModel):
    """Reset password request; ``newPassword`` on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    email: str | None = None
    code: str | None = None
    new_password: str | None = Field(None, alias="newPassword", max_length=128)


class MessageResponse(BaseModel):
    message: str
