# src/murmur/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .auth import router as auth_router
from .friends import router as friends_router
from .messages import router as messages_router
from .realtime import router as realtime_router
from .system import router as system_router
from .users import router as users_router

__all__ = [
    "auth_router",
    "friends_router",
    "messages_router",
    "realtime_router",
    "system_router",
    "users_router",
]
