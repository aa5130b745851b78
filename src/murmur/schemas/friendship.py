"""Friendship-related Pydantic schemas."""

from datetime import datetime

from pydantic import Field, field_serializer

from murmur.db.time import ensure_utc
from murmur.models.friendship import FriendshipStatus

from .common import CamelModel, UserSummary
from .user import UserResponse


class FriendRequestCreate(CamelModel):
    """Body of ``POST /friends/request``."""

    recipient_id: str = Field(..., min_length=1)


class FriendshipAction(CamelModel):
    """Body of accept/decline calls."""

    friendship_id: int


class FriendRemove(CamelModel):
    """Body of ``POST /friends/remove``."""

    friend_id: str = Field(..., min_length=1)


class FriendshipResponse(CamelModel):
    """A relationship edge with both parties resolved."""

    id: int
    requester: UserSummary
    recipient: UserSummary
    status: FriendshipStatus
    created_at: datetime
    updated_at: datetime

    @field_serializer("created_at", "updated_at")
    def serialize_timestamps(self, value: datetime) -> datetime:
        """Report timestamps in UTC."""
        return ensure_utc(value)  # type: ignore[return-value]


class MutualFriendsResponse(CamelModel):
    """Friends shared by the caller and another user."""

    mutual_count: int
    mutual_friends: list[UserResponse]
