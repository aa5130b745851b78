"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .common import CamelModel, PresenceStatus, UserSummary
from .direct_message import (
    ContactResponse,
    MessageCreate,
    MessageDelivered,
    MessageResponse,
    ReadReceiptResponse,
    UnreadCountsResponse,
)
from .friendship import FriendRequestCreate, FriendshipAction, FriendshipResponse
from .user import LoginRequest, RegisterRequest, TokenResponse, UserResponse

__all__ = [
    "CamelModel", "PresenceStatus", "UserSummary",
    "ContactResponse", "MessageCreate", "MessageDelivered", "MessageResponse",
    "ReadReceiptResponse", "UnreadCountsResponse",
    "FriendRequestCreate", "FriendshipAction", "FriendshipResponse",
    "LoginRequest", "RegisterRequest", "TokenResponse", "UserResponse",
]
