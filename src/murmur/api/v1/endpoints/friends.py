"""Friendship endpoints for the Murmur API.

Request and accept calls also push the matching realtime notification to
the other party's mailbox, so clients no longer need to relay them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, status

from murmur.core.settings import settings
from murmur.realtime.session import FRIEND_REQUEST_RECEIVED_EVENT, FRIEND_REQUEST_RESPONSE_EVENT
from murmur.schemas.friendship import (
    FriendRemove,
    FriendRequestCreate,
    FriendshipAction,
    FriendshipResponse,
    MutualFriendsResponse,
)
from murmur.schemas.realtime import FriendRequestReceived, FriendRequestResponse
from murmur.schemas.user import UserResponse

from ..dependencies import CurrentUserDep, HubDep, run_service
from .users import with_presence

router = APIRouter(prefix="/friends", tags=["friends"])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[UserResponse])
async def list_friends(current_user: CurrentUserDep, hub: HubDep) -> list[UserResponse]:
    """Return the caller's accepted friends with live presence."""
    friends = await run_service(hub.friendships.list_friends, current_user.id)
    return [await with_presence(hub, friend) for friend in friends]


@router.get("/requests", response_model=list[FriendshipResponse])
async def pending_requests(current_user: CurrentUserDep, hub: HubDep) -> list[FriendshipResponse]:
    """Return requests waiting for the caller's answer."""
    edges = await run_service(hub.friendships.pending_requests, current_user.id)
    return [FriendshipResponse.model_validate(edge) for edge in edges]


@router.get("/sent", response_model=list[FriendshipResponse])
async def sent_requests(current_user: CurrentUserDep, hub: HubDep) -> list[FriendshipResponse]:
    """Return requests the caller sent that are still pending."""
    edges = await run_service(hub.friendships.sent_requests, current_user.id)
    return [FriendshipResponse.model_validate(edge) for edge in edges]


@router.post("/request", status_code=status.HTTP_201_CREATED, response_model=FriendshipResponse)
async def send_request(
    payload: FriendRequestCreate,
    current_user: CurrentUserDep,
    hub: HubDep,
) -> FriendshipResponse:
    """Send a friend request and notify the recipient."""
    edge = await run_service(hub.friendships.send_request, current_user.id, payload.recipient_id)
    notice = FriendRequestReceived(
        requester_name=current_user.username,
        message=f"{current_user.username} sent you a friend request",
    )
    await hub.router.publish_to_user(
        payload.recipient_id, FRIEND_REQUEST_RECEIVED_EVENT, notice.to_wire()
    )
    return FriendshipResponse.model_validate(edge)


@router.post("/accept", response_model=FriendshipResponse)
async def accept_request(
    payload: FriendshipAction,
    current_user: CurrentUserDep,
    hub: HubDep,
) -> FriendshipResponse:
    """Accept a pending request and notify the requester."""
    edge = await run_service(hub.friendships.accept, payload.friendship_id, current_user.id)
    notice = FriendRequestResponse(
        accepted=True,
        accepter_name=current_user.username,
        message=f"{current_user.username} accepted your friend request",
    )
    await hub.router.publish_to_user(
        edge.requester_id, FRIEND_REQUEST_RESPONSE_EVENT, notice.to_wire()
    )
    logger.info("Friend request %s accepted by %s", edge.id, current_user.id)
    return FriendshipResponse.model_validate(edge)


@router.post("/decline", response_model=FriendshipResponse)
async def decline_request(
    payload: FriendshipAction,
    current_user: CurrentUserDep,
    hub: HubDep,
) -> FriendshipResponse:
    """Decline a pending request addressed to the caller."""
    edge = await run_service(hub.friendships.decline, payload.friendship_id, current_user.id)
    return FriendshipResponse.model_validate(edge)


@router.post("/remove")
async def remove_friend(
    payload: FriendRemove,
    current_user: CurrentUserDep,
    hub: HubDep,
) -> dict[str, str]:
    """End an accepted friendship."""
    await run_service(hub.friendships.remove, current_user.id, payload.friend_id)
    logger.info("User %s removed friend %s", current_user.id, payload.friend_id)
    return {"message": "Friend removed successfully"}


@router.get("/search", response_model=list[UserResponse])
async def search_users(
    current_user: CurrentUserDep,
    hub: HubDep,
    query: str = Query("", description="Username or email fragment"),
) -> list[UserResponse]:
    """Find users the caller has no relationship with yet."""

    def _search() -> list:
        return hub.friendships.search_users(
            current_user.id,
            query,
            min_length=settings.user_search_min_length,
            limit=settings.user_search_limit,
        )

    users = await run_service(_search)
    return [await with_presence(hub, user) for user in users]


@router.get("/mutual/{user_id}", response_model=MutualFriendsResponse)
async def mutual_friends(
    user_id: str,
    current_user: CurrentUserDep,
    hub: HubDep,
) -> MutualFriendsResponse:
    """Return the friends the caller shares with ``user_id``."""
    shared = await run_service(hub.friendships.mutual_friends, current_user.id, user_id)
    return MutualFriendsResponse(
        mutual_count=len(shared),
        mutual_friends=[await with_presence(hub, user) for user in shared],
    )
