# src/murmur/api/v1/endpoints/messages.py
"""Direct message endpoints for the Murmur API.

These are the HTTP fallback for clients without a realtime connection. They
share :class:`~murmur.services.messaging.MessagingService` with the socket
handlers, so a message sent here still reaches connected clients.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status

from murmur.core.errors import MurmurError
from murmur.models import User
from murmur.realtime.hub import RealtimeHub
from murmur.schemas.direct_message import (
    ContactResponse,
    MessageCreate,
    MessageResponse,
    ReadReceiptResponse,
    UnreadCountsResponse,
)
from murmur.services.blob_storage import StoredBlob

from ..dependencies import CurrentUserDep, HubDep, as_http_exception, run_service
from .users import with_presence

router = APIRouter(prefix="/messages", tags=["messages"])
logger = logging.getLogger(__name__)

VOICE_MESSAGE_NAME = "voice_message.webm"


@router.get("/contacts", response_model=list[ContactResponse])
async def list_contacts(current_user: CurrentUserDep, hub: HubDep) -> list[ContactResponse]:
    """Return the caller's friends with presence and unread counts."""
    friends = await run_service(hub.friendships.list_friends, current_user.id)
    try:
        unread = await hub.messaging.unread_counts(current_user.id)
    except MurmurError as exc:
        raise as_http_exception(exc) from exc

    contacts = []
    for friend in friends:
        profile = await with_presence(hub, friend)
        contacts.append(
            ContactResponse(
                **profile.model_dump(),
                unread_count=unread.counts.get(friend.id, 0),
            )
        )
    return contacts


@router.get("/unread-counts", response_model=UnreadCountsResponse)
async def unread_counts(current_user: CurrentUserDep, hub: HubDep) -> UnreadCountsResponse:
    """Return unread message counts per sender."""
    try:
        return await hub.messaging.unread_counts(current_user.id)
    except MurmurError as exc:
        raise as_http_exception(exc) from exc


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=MessageResponse)
async def send_message(
    message_data: MessageCreate,
    current_user: CurrentUserDep,
    hub: HubDep,
) -> MessageResponse:
    """Send a text message to a friend without a realtime connection."""
    try:
        message = await hub.messaging.send_message(
            current_user.id, message_data.recipient_id, message_data.content
        )
    except MurmurError as exc:
        raise as_http_exception(exc) from exc
    return MessageResponse.model_validate(message)


async def _store_upload(
    hub: RealtimeHub, current_user: User, upload: UploadFile, original_name: str
) -> StoredBlob:
    def _save() -> StoredBlob:
        return hub.blob_storage.save(
            upload.file,
            original_name=original_name,
            content_type=upload.content_type,
            owner_id=current_user.id,
        )

    return await run_service(_save)


@router.post("/upload", status_code=status.HTTP_201_CREATED, response_model=MessageResponse)
async def upload_attachment(
    current_user: CurrentUserDep,
    hub: HubDep,
    file: Annotated[UploadFile, File(description="Image, video, audio or document")],
    recipient_id: Annotated[str, Form(alias="recipientId")],
    content: Annotated[str | None, Form()] = None,
) -> MessageResponse:
    """Store an attachment and send it as a message."""
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")

    blob = await _store_upload(hub, current_user, file, file.filename)
    try:
        message = await hub.messaging.send_attachment(
            current_user.id, recipient_id, blob, content=content
        )
    except MurmurError as exc:
        await asyncio.to_thread(hub.blob_storage.delete, blob)
        raise as_http_exception(exc) from exc
    return MessageResponse.model_validate(message)


@router.post("/upload-audio", status_code=status.HTTP_201_CREATED, response_model=MessageResponse)
async def upload_audio(
    current_user: CurrentUserDep,
    hub: HubDep,
    audio: Annotated[UploadFile, File(description="Recorded voice message")],
    recipient_id: Annotated[str, Form(alias="recipientId")],
    duration: Annotated[float, Form(ge=0)] = 0,
) -> MessageResponse:
    """Store a voice recording and send it labelled with its duration."""
    blob = await _store_upload(hub, current_user, audio, audio.filename or VOICE_MESSAGE_NAME)
    try:
        message = await hub.messaging.send_audio(
            current_user.id, recipient_id, blob, duration=duration
        )
    except MurmurError as exc:
        await asyncio.to_thread(hub.blob_storage.delete, blob)
        raise as_http_exception(exc) from exc
    return MessageResponse.model_validate(message)


@router.get("/{user_id}", response_model=list[MessageResponse])
async def conversation_history(
    user_id: str,
    current_user: CurrentUserDep,
    hub: HubDep,
) -> list[MessageResponse]:
    """Return the latest messages with ``user_id``, oldest first.

    Messages received from ``user_id`` are marked read as a side effect.
    """
    try:
        messages = await hub.messaging.history(current_user.id, user_id)
    except MurmurError as exc:
        raise as_http_exception(exc) from exc
    return [MessageResponse.model_validate(message) for message in messages]


@router.post("/{user_id}/read", response_model=ReadReceiptResponse)
async def mark_read(
    user_id: str,
    current_user: CurrentUserDep,
    hub: HubDep,
) -> ReadReceiptResponse:
    """Mark everything ``user_id`` sent to the caller as read."""
    try:
        receipt = await hub.messaging.mark_read(user_id, current_user.id)
    except MurmurError as exc:
        raise as_http_exception(exc) from exc
    return ReadReceiptResponse(
        recipient_id=receipt.recipient_id,
        read_at=receipt.read_at,
        count=receipt.count,
    )
