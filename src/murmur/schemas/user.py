"""User-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer

from murmur.db.time import ensure_utc

from .common import CamelModel


class RegisterRequest(BaseModel):
    """Schema for account sign-up."""

    username: str = Field(..., min_length=1, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=6, description="Plain-text password, hashed on receipt")


class LoginRequest(BaseModel):
    """Schema for login submissions."""

    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Bearer token issued after registration or login."""

    access_token: str
    token_type: str = "bearer"
    user_id: str
    username: str


class ProfileUpdate(BaseModel):
    """Partial profile update; unset fields are left untouched."""

    username: str | None = Field(None, min_length=1, max_length=64)
    full_name: str | None = Field(None, max_length=128)
    bio: str | None = Field(None, max_length=500)
    location: str | None = Field(None, max_length=128)


class UserResponse(CamelModel):
    """Public profile with presence."""

    id: str
    username: str
    full_name: str | None = None
    bio: str | None = None
    location: str | None = None
    profile_picture: str | None = None
    is_online: bool
    last_seen: datetime | None = None
    created_at: datetime | None = None

    @field_serializer("last_seen", "created_at")
    def serialize_timestamps(self, value: datetime | None) -> datetime | None:
        """Report timestamps in UTC."""
        return ensure_utc(value)


class UserDetailResponse(UserResponse):
    """Profile as seen by its owner."""

    email: str

    model_config = ConfigDict(from_attributes=True)
