"""Shared API dependencies for authentication and common functionality."""

import asyncio
import logging
from collections.abc import Callable
from typing import Annotated, Any, TypeVar

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.exc import SQLAlchemyError

from murmur.core.errors import (
    AuthorizationError,
    InfrastructureError,
    MurmurError,
    NotFoundError,
    ValidationError,
)
from murmur.core.security import decode_access_token
from murmur.models import User
from murmur.realtime.hub import RealtimeHub, get_hub
from murmur.services import user_service

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

_STATUS_BY_ERROR: dict[type[MurmurError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InfrastructureError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_hub_dep() -> RealtimeHub:
    """Return the shared realtime hub."""
    return get_hub()


# Type alias for realtime hub dependency
HubDep = Annotated[RealtimeHub, Depends(get_hub_dep)]


def as_http_exception(exc: MurmurError) -> HTTPException:
    """Translate a service error into the matching HTTP error."""
    for error_type, status_code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)


async def run_service(fn: Callable[..., T], *args: Any) -> T:
    """Run a blocking service call off the event loop and map its errors to HTTP.

    Raises:
        HTTPException: For any ``MurmurError`` or database failure.
    """
    try:
        return await asyncio.to_thread(fn, *args)
    except MurmurError as exc:
        raise as_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.error("Service call %s failed: %s", getattr(fn, "__name__", fn), exc, exc_info=True)
        raise as_http_exception(InfrastructureError("Failed to process request")) from exc


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    hub: HubDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        hub: Realtime hub providing the database session factory

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    try:
        user_id = decode_access_token(credentials.credentials)
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    with hub.session_factory() as db:
        user = user_service.get_user(db, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]
