"""
Email Verification Schemas

Fields are optional: a missing or malformed address is answered by the
service with code 1001 (send) or 2001 (verify).
"""

from pydantic import BaseModel, Field, field_validator

from .models import CodeScene


def _scene_or_register(value: object) -> CodeScene:
    # Missing, blank or unknown scenes fall back to registration
    if isinstance(value, CodeScene):
        return value
    if isinstance(value, str):
        try:
            return CodeScene(value.strip().lower())
        except ValueError:
            pass
    return CodeScene.REGISTER


class SendCodeRequest(BaseModel):
    email: str | None = None
    scene: CodeScene = CodeScene.REGISTER

    @field_validator("scene", mode="before")
    @classmethod
    def default_scene(cls, value: object) -> CodeScene:
        return _scene_or_register(value)


class VerifyCodeRequest(BaseModel):
    email: str | None = None
    code: str | None = Field(None, max_length=32)
    scene: CodeScene = CodeScene.REGISTER

    @field_validator("scene", mode="before")
    @classmethod
    def default_scene(cls, value: object) -> CodeScene:
        return _scene_or_register(value)


class CodeResponse(BaseModel):
    """Body of every email-code endpoint; ``code`` is 0 on success."""

    code: int
    message: str
    remaining_attempts: int | None = Field(None, serialization_alias="remainingAttempts")
