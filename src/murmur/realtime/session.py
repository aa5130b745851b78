"""Per-connection realtime session.

A session moves through ``UNAUTHENTICATED → IDENTIFIED → CLOSED``. Frames
are dispatched on their ``event`` tag to one handler each; the transport
awaits :meth:`RealtimeSession.dispatch` frame by frame, so handlers of the
same connection never overlap while different connections interleave freely.

Handlers isolate their own failures: nothing raised inside a handler reaches
the transport loop or any other connection. ``send-message`` is the one
event with a client-facing outcome, and it always produces exactly one of
``message-delivered`` or ``message-error`` for the sender.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, ClassVar, TypeVar

import pydantic

from murmur.core.errors import (
    AuthorizationError,
    InfrastructureError,
    MurmurError,
    ValidationError,
)
from murmur.realtime.channels import ChannelRouter, Connection, mailbox_channel, pair_channel
from murmur.realtime.presence import PresenceRegistry
from murmur.schemas.common import CamelModel
from murmur.schemas.direct_message import MessageDelivered
from murmur.schemas.realtime import (
    FriendRequestAcceptedPayload,
    FriendRequestReceived,
    FriendRequestResponse,
    FriendRequestSentPayload,
    InboundEnvelope,
    MessageError,
    PairPayload,
    SendMessagePayload,
    UserConnectedPayload,
    UserTyping,
)
from murmur.services.messaging import MessagingService, require_id

logger = logging.getLogger(__name__)

MESSAGE_DELIVERED_EVENT = "message-delivered"
MESSAGE_ERROR_EVENT = "message-error"
USER_TYPING_EVENT = "user-typing"
FRIEND_REQUEST_RECEIVED_EVENT = "friend-request-received"
FRIEND_REQUEST_RESPONSE_EVENT = "friend-request-response"

P = TypeVar("P", bound=CamelModel)


class SessionState(str, enum.Enum):
    """Lifecycle of one realtime connection."""

    UNAUTHENTICATED = "unauthenticated"
    IDENTIFIED = "identified"
    CLOSED = "closed"


class ProtocolError(MurmurError):
    """Raised for frames that are well-formed but not valid in the current state."""

    code = "protocol_error"


def parse_payload(model: type[P], data: Any) -> P:
    """Validate an event payload, turning parse failures into ``ValidationError``."""
    if not isinstance(data, dict):
        raise ValidationError("Malformed payload")
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError("Malformed payload") from exc


def user_id_from(data: Any) -> str:
    """Accept either a bare user id or ``{"userId": ...}``."""
    if isinstance(data, dict):
        data = data.get("userId", data.get("user_id"))
    return require_id(data, "userId")


class RealtimeSession:
    """State machine driving one client connection."""

    HANDLERS: ClassVar[dict[str, str]] = {
        "user-connected": "on_user_connected",
        "join-chat": "on_join_chat",
        "send-message": "on_send_message",
        "mark-messages-read": "on_mark_messages_read",
        "typing-start": "on_typing_start",
        "typing-stop": "on_typing_stop",
        "user-active": "on_user_active",
        "user-inactive": "on_user_inactive",
        "user-disconnected": "on_user_disconnected",
        "friend-request-sent": "on_friend_request_sent",
        "friend-request-accepted": "on_friend_request_accepted",
    }

    def __init__(
        self,
        connection: Connection,
        *,
        router: ChannelRouter,
        presence: PresenceRegistry,
        messaging: MessagingService,
        authenticated_user_id: str | None = None,
    ) -> None:
        self.connection = connection
        self.router = router
        self.presence = presence
        self.messaging = messaging
        # Set when the transport already verified a bearer token.
        self.authenticated_user_id = authenticated_user_id
        self.state = SessionState.UNAUTHENTICATED
        self.user_id: str | None = None
        self.username: str | None = None

    @property
    def identified(self) -> bool:
        return self.state is SessionState.IDENTIFIED

    async def open(self) -> None:
        """Register the connection so it receives presence broadcasts."""
        await self.router.register(self.connection)
        logger.info("New connection: %s", self.connection.id)

    async def handle_frame(self, frame: Any) -> None:
        """Parse a raw inbound frame and dispatch it."""
        try:
            envelope = InboundEnvelope.model_validate(frame)
        except pydantic.ValidationError:
            logger.warning("Ignoring malformed frame on %s", self.connection.id)
            return
        await self.dispatch(envelope.event, envelope.data)

    async def dispatch(self, event: str, data: Any = None) -> None:
        """Run the handler for ``event``; failures are logged, never raised."""
        if self.state is SessionState.CLOSED:
            logger.debug("Ignoring %s on closed connection %s", event, self.connection.id)
            return

        handler_name = self.HANDLERS.get(event)
        if handler_name is None:
            logger.warning("Unknown event %r on connection %s", event, self.connection.id)
            return

        handler = getattr(self, handler_name)
        try:
            await handler(data)
        except MurmurError as exc:
            logger.warning(
                "Rejected %s on connection %s: %s", event, self.connection.id, exc.message
            )
        except Exception:
            logger.exception("Error handling %s on connection %s", event, self.connection.id)

    async def close(self) -> None:
        """Reconcile state after the transport closed.

        A connection that never identified leaves without touching presence.
        """
        if self.state is SessionState.CLOSED:
            return
        user_id = self.user_id if self.identified else None
        self.state = SessionState.CLOSED
        await self.router.leave_all(self.connection)

        if user_id is not None:
            try:
                await self.presence.set_offline(user_id)
            except Exception:
                logger.exception("Error handling disconnection of %s", user_id)
            else:
                logger.info("User %s (%s) disconnected", self.username, user_id)
        logger.info("Connection closed: %s", self.connection.id)

    # Lifecycle

    async def on_user_connected(self, data: Any) -> None:
        payload = parse_payload(UserConnectedPayload, data)
        user_id = require_id(payload.user_id, "userId")
        if self.authenticated_user_id is not None and user_id != self.authenticated_user_id:
            raise AuthorizationError("Token does not match userId")
        if self.identified and user_id != self.user_id:
            raise ProtocolError(f"Connection already bound to {self.user_id}")

        self.user_id = user_id
        self.username = payload.username
        self.state = SessionState.IDENTIFIED
        await self.router.join(self.connection, mailbox_channel(user_id))
        await self.presence.set_online(user_id, self.connection)
        logger.info("User %s (%s) connected", self.username, user_id)

    async def on_user_disconnected(self, data: Any) -> None:
        user_id = self.user_id if self.identified else user_id_from(data)
        if self.authenticated_user_id is not None and user_id != self.authenticated_user_id:
            raise AuthorizationError("Token does not match userId")
        if self.identified:
            await self.router.leave_all(self.connection)
            await self.router.register(self.connection)
            self.state = SessionState.UNAUTHENTICATED
            self.user_id = None
        await self.presence.set_offline(user_id, origin=self.connection)
        logger.info("User %s manually disconnected", user_id)

    async def on_user_active(self, data: Any) -> None:
        await self.presence.touch(self._acting_user(data), active=True, origin=self.connection)

    async def on_user_inactive(self, data: Any) -> None:
        await self.presence.touch(self._acting_user(data), active=False, origin=self.connection)

    # Conversations

    async def on_join_chat(self, data: Any) -> None:
        if not self.identified:
            raise ProtocolError("join-chat before user-connected")
        payload = parse_payload(PairPayload, data)
        sender_id = self._check_self(require_id(payload.sender_id, "senderId"))
        recipient_id = require_id(payload.recipient_id, "recipientId")
        channel = pair_channel(sender_id, recipient_id)
        await self.router.join(self.connection, channel)
        logger.info("User %s joined chat room: %s", sender_id, channel)

    async def on_send_message(self, data: Any) -> None:
        try:
            payload = parse_payload(SendMessagePayload, data)
            if self.identified and payload.sender_id and payload.sender_id != self.user_id:
                raise AuthorizationError("Sender does not match connected user")
            message = await self.messaging.send_message(
                payload.sender_id, payload.recipient_id, payload.content
            )
        except InfrastructureError as exc:
            logger.error("Error sending message: %s", exc.__cause__ or exc)
            await self._report(MessageError(error="Failed to send message", code=exc.code))
            return
        except MurmurError as exc:
            await self._report(MessageError(error=exc.message, code=exc.code))
            return
        except Exception:
            logger.exception("Error sending message on connection %s", self.connection.id)
            await self._report(
                MessageError(error="Failed to send message", code=InfrastructureError.code)
            )
            return

        ack = MessageDelivered(message_id=message.id, timestamp=message.created_at)
        await self.router.send(self.connection, MESSAGE_DELIVERED_EVENT, ack.to_wire())

    async def on_mark_messages_read(self, data: Any) -> None:
        payload = parse_payload(PairPayload, data)
        if self.identified and payload.recipient_id != self.user_id:
            raise AuthorizationError("Only the recipient can mark messages read")
        await self.messaging.mark_read(payload.sender_id, payload.recipient_id)

    async def on_typing_start(self, data: Any) -> None:
        await self._typing(data, True)

    async def on_typing_stop(self, data: Any) -> None:
        await self._typing(data, False)

    # Friendship notifications

    async def on_friend_request_sent(self, data: Any) -> None:
        payload = parse_payload(FriendRequestSentPayload, data)
        recipient_id = require_id(payload.recipient_id, "recipientId")
        name = payload.requester_name or self.username or "Someone"
        notice = FriendRequestReceived(
            requester_name=name,
            message=f"{name} sent you a friend request",
        )
        await self.router.publish_to_user(
            recipient_id, FRIEND_REQUEST_RECEIVED_EVENT, notice.to_wire(), exclude=self.connection
        )
        logger.info("Friend request notification sent to %s", recipient_id)

    async def on_friend_request_accepted(self, data: Any) -> None:
        payload = parse_payload(FriendRequestAcceptedPayload, data)
        requester_id = require_id(payload.requester_id, "requesterId")
        name = payload.accepter_name or self.username or "Someone"
        notice = FriendRequestResponse(
            accepted=True,
            accepter_name=name,
            message=f"{name} accepted your friend request",
        )
        await self.router.publish_to_user(
            requester_id, FRIEND_REQUEST_RESPONSE_EVENT, notice.to_wire(), exclude=self.connection
        )
        logger.info("Friend request acceptance notification sent to %s", requester_id)

    # Helpers

    async def _typing(self, data: Any, is_typing: bool) -> None:
        payload = parse_payload(PairPayload, data)
        sender_id = self._check_self(require_id(payload.sender_id, "senderId"))
        recipient_id = require_id(payload.recipient_id, "recipientId")
        notice = UserTyping(user_id=sender_id, is_typing=is_typing)
        await self.router.publish(
            pair_channel(sender_id, recipient_id),
            USER_TYPING_EVENT,
            notice.to_wire(),
            exclude=self.connection,
        )

    def _check_self(self, user_id: str) -> str:
        if self.identified and user_id != self.user_id:
            raise AuthorizationError("Event names a different user than the connection")
        return user_id

    def _acting_user(self, data: Any) -> str:
        return self._check_self(user_id_from(data))

    async def _report(self, error: MessageError) -> None:
        await self.router.send(self.connection, MESSAGE_ERROR_EVENT, error.to_wire())
