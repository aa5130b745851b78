"""Friendship-gated direct messaging.

:class:`MessagingService` holds the operations shared by the realtime session
and the HTTP fallback. Store calls run in worker threads, so every one of
them is a suspension point; persistence always completes before fan-out, and
fan-out is skipped entirely when no router is attached.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from murmur.core.errors import AuthorizationError, InfrastructureError, ValidationError
from murmur.core.settings import settings
from murmur.models import Message, MessageType
from murmur.realtime.channels import CHANNEL_SEPARATOR, ChannelRouter, pair_channel
from murmur.schemas.direct_message import (
    MessageResponse,
    ReadReceiptResponse,
    UnreadCountsResponse,
)
from murmur.services.blob_storage import StoredBlob
from murmur.services.friendship import FriendshipGraph
from murmur.services.message_store import MessageStore, NewMessage, ReadReceipt

if TYPE_CHECKING:
    from murmur.realtime.presence import PresenceRegistry

logger = logging.getLogger(__name__)

NEW_MESSAGE_EVENT = "new-message"
MESSAGES_READ_EVENT = "messages-read"

T = TypeVar("T")


def require_id(value: Any, field: str) -> str:
    """Return ``value`` as a usable user id or raise ``ValidationError``."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Missing required field: {field}")
    if CHANNEL_SEPARATOR in value:
        raise ValidationError(f"Invalid {field}")
    return value


def serialize_message(message: Message) -> dict[str, Any]:
    """Render a stored message as the ``new-message`` payload."""
    return MessageResponse.model_validate(message).to_wire()


class MessagingService:
    """Send, list and acknowledge direct messages between friends."""

    def __init__(
        self,
        friendships: FriendshipGraph,
        messages: MessageStore,
        *,
        router: ChannelRouter | None = None,
        presence: PresenceRegistry | None = None,
        max_length: int | None = None,
    ) -> None:
        self.friendships = friendships
        self.messages = messages
        self.router = router
        self.presence = presence
        self.max_length = max_length or settings.message_max_length

    async def send_message(self, sender_id: Any, recipient_id: Any, content: Any) -> Message:
        """Validate, gate, persist and fan out a text message.

        Raises:
            ValidationError: If a field is missing, empty or too long.
            AuthorizationError: If the users are not accepted friends.
            InfrastructureError: If a store call fails.
        """
        sender_id = require_id(sender_id, "senderId")
        recipient_id = require_id(recipient_id, "recipientId")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Missing required field: content")
        text = content.strip()
        if len(text) > self.max_length:
            raise ValidationError(f"Message exceeds {self.max_length} characters")

        await self._require_friends(sender_id, recipient_id)
        message = await self._call(
            self.messages.create,
            NewMessage(
                sender_id=sender_id,
                recipient_id=recipient_id,
                content=text,
                message_type=MessageType.TEXT,
            ),
        )
        logger.info("Message %s sent from %s to %s", message.id, sender_id, recipient_id)
        await self.fan_out(message)
        return message

    async def send_attachment(
        self,
        sender_id: Any,
        recipient_id: Any,
        blob: StoredBlob,
        *,
        content: str | None = None,
    ) -> Message:
        """Persist and fan out a message pointing at a stored attachment."""
        return await self._send_blob(
            sender_id,
            recipient_id,
            blob,
            content=(content or blob.original_name).strip() or blob.original_name,
            message_type=blob.message_type,
            action="send files to",
        )

    async def send_audio(
        self,
        sender_id: Any,
        recipient_id: Any,
        blob: StoredBlob,
        *,
        duration: float = 0,
    ) -> Message:
        """Persist and fan out a recorded voice message.

        The message is always typed ``audio`` and labelled with the recording
        length in whole seconds, rounding halves up.
        """
        seconds = math.floor(max(duration, 0) + 0.5)
        return await self._send_blob(
            sender_id,
            recipient_id,
            blob,
            content=f"Audio message ({seconds}s)",
            message_type=MessageType.AUDIO,
            action="send audio to",
        )

    async def fan_out(self, message: Message) -> None:
        """Publish ``new-message`` to the pair channel and the recipient's mailbox."""
        if self.router is None:
            return
        payload = serialize_message(message)
        channel = pair_channel(message.sender_id, message.recipient_id)
        await self.router.publish(channel, NEW_MESSAGE_EVENT, payload)
        await self.router.publish_to_user(message.recipient_id, NEW_MESSAGE_EVENT, payload)

    async def mark_read(self, sender_id: Any, recipient_id: Any) -> ReadReceipt:
        """Mark everything ``sender_id`` sent to ``recipient_id`` as read.

        The sender, if reachable through the presence registry, receives a
        ``messages-read`` receipt on its current connection.
        """
        sender_id = require_id(sender_id, "senderId")
        recipient_id = require_id(recipient_id, "recipientId")
        receipt = await self._call(self.messages.mark_read_bulk, sender_id, recipient_id)
        logger.debug(
            "Marked %d messages from %s to %s as read", receipt.count, sender_id, recipient_id
        )
        await self._push_receipt(receipt)
        return receipt

    async def history(self, user_id: Any, other_id: Any, limit: int | None = None) -> list[Message]:
        """Return the conversation between two friends and acknowledge it.

        Messages from ``other_id`` to ``user_id`` are marked read as a side
        effect, which also notifies ``other_id``.
        """
        user_id = require_id(user_id, "userId")
        other_id = require_id(other_id, "otherId")
        await self._require_friends(user_id, other_id)
        page = limit or settings.message_history_limit
        messages = await self._call(self.messages.find_between, user_id, other_id, page)
        await self.mark_read(other_id, user_id)
        return messages

    async def unread_counts(self, user_id: str) -> UnreadCountsResponse:
        """Return unread counts per sender and in total."""
        counts = await self._call(self.messages.unread_counts, user_id)
        return UnreadCountsResponse(counts=counts, total=sum(counts.values()))

    async def _push_receipt(self, receipt: ReadReceipt) -> None:
        if self.router is None or self.presence is None:
            return
        info = await self.presence.lookup(receipt.sender_id)
        if info.handle is None:
            return
        payload = ReadReceiptResponse(
            recipient_id=receipt.recipient_id,
            read_at=receipt.read_at,
            count=receipt.count,
        ).to_wire()
        await self.router.send(info.handle, MESSAGES_READ_EVENT, payload)

    async def _send_blob(
        self,
        sender_id: Any,
        recipient_id: Any,
        blob: StoredBlob,
        *,
        content: str,
        message_type: MessageType,
        action: str,
    ) -> Message:
        sender_id = require_id(sender_id, "senderId")
        recipient_id = require_id(recipient_id, "recipientId")
        await self._require_friends(sender_id, recipient_id, action=action)
        message = await self._call(
            self.messages.create,
            NewMessage(
                sender_id=sender_id,
                recipient_id=recipient_id,
                content=content,
                message_type=message_type,
                file_path=blob.path,
                file_size=blob.size,
                file_name=blob.original_name,
            ),
        )
        logger.info(
            "Attachment message %s (%s) sent from %s to %s",
            message.id,
            message.message_type.value,
            sender_id,
            recipient_id,
        )
        await self.fan_out(message)
        return message

    async def _require_friends(
        self, sender_id: str, recipient_id: str, *, action: str = "message"
    ) -> None:
        if not await self._call(self.friendships.are_friends, sender_id, recipient_id):
            raise AuthorizationError(f"You can only {action} friends")

    @staticmethod
    async def _call(fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as exc:
            logger.error("Store call %s failed: %s", getattr(fn, "__name__", fn), exc, exc_info=True)
            raise InfrastructureError("Failed to process request") from exc
