"""User profile Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from coursechain.schemas.auth import UserPublic


class UserDetail(UserPublic):
    """Public profile page of an account."""

    bio: str | None = None
    avatar_url: str | None = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class UserProfile(UserDetail):
    """Full profile of an account, as shown to its owner."""

    updated_at: datetime
    last_login: datetime | None = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ProfileUpdateRequest(BaseModel):
    """Schema for updating user profile information."""

    display_name: str | None = Field(
        None,
        min_length=1,
        max_length=100,
        description="Optional display name (1-100 characters)",
    )
    bio: str | None = Field(None, max_length=500, description="Optional short biography")
    avatar_url: str | None = Field(
        None,
        max_length=2048,
        pattern=r"^https?://\S+$",
        description="Optional http(s) URL of an avatar image",
    )


class UserListResponse(BaseModel):
    """A page of public user records."""

    users: list[UserPublic]
    total: int
    limit: int
    offset: int


class UserDetailResponse(BaseModel):
    user: UserDetail


class UserProfileResponse(BaseModel):
    user: UserProfile
