"""User-related endpoints for the Murmur API."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, status

from murmur.models import User
from murmur.realtime.hub import RealtimeHub
from murmur.schemas.common import PresenceStatus
from murmur.schemas.user import ProfileUpdate, UserDetailResponse, UserResponse
from murmur.services import user_service

from ..dependencies import CurrentUserDep, HubDep

router = APIRouter(prefix="/users", tags=["users"])


async def with_presence(hub: RealtimeHub, user: User) -> UserResponse:
    """Render a profile with the live presence known to this process."""
    info = await hub.presence.lookup(user.id)
    profile = UserResponse.model_validate(user)
    return profile.model_copy(
        update={"is_online": info.online, "last_seen": info.last_seen or user.last_seen}
    )


@router.get("/me", response_model=UserDetailResponse)
async def read_me(current_user: CurrentUserDep) -> UserDetailResponse:
    """Return the caller's own profile."""
    return UserDetailResponse.model_validate(current_user)


@router.patch("/me", response_model=UserDetailResponse)
async def update_me(
    payload: ProfileUpdate,
    current_user: CurrentUserDep,
    hub: HubDep,
) -> UserDetailResponse:
    """Update the caller's profile fields."""

    def _update() -> User:
        with hub.session_factory() as db:
            db_user = user_service.get_user(db, current_user.id)
            if db_user is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
            return user_service.update_user(db, db_user, payload)

    updated = await asyncio.to_thread(_update)
    return UserDetailResponse.model_validate(updated)


@router.get("/{user_id}", response_model=UserResponse)
async def read_user(user_id: str, _: CurrentUserDep, hub: HubDep) -> UserResponse:
    """Return another user's public profile and presence."""

    def _load() -> User | None:
        with hub.session_factory() as db:
            return user_service.get_user(db, user_id)

    user = await asyncio.to_thread(_load)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return await with_presence(hub, user)


@router.get("/{user_id}/presence", response_model=PresenceStatus)
async def read_presence(user_id: str, _: CurrentUserDep, hub: HubDep) -> PresenceStatus:
    """Return whether ``user_id`` is online and when they were last seen."""
    info = await hub.presence.lookup(user_id)
    if info.last_seen is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return PresenceStatus(user_id=user_id, is_online=info.online, last_seen=info.last_seen)
