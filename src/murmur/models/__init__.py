# src/murmur/models/__init__.py
"""SQLAlchemy models for the Murmur application."""

from .friendship import Friendship, FriendshipStatus
from .message import Message, MessageType
from .user import User

__all__ = [
    "Friendship", "FriendshipStatus",
    "Message", "MessageType",
    "User",
]
