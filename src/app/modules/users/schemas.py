"""User schemas."""

from pydantic import BaseModel, ConfigDict


class UserProfileResponse(BaseModel):
    """Public view of an identity."""

    model_config = ConfigDict(from_attributes=True)

    username: str
    email: str | None = None
    roles: list[str]


class UserListResponse(BaseModel):
    """Response for GET /admin/users."""

    users: list[UserProfileResponse]
    total: int
