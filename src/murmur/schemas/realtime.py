"""Wire models for the realtime protocol.

Every frame, in either direction, is ``{"event": <name>, "data": <payload>}``.
Payload fields are optional at parse time; required-field checks happen in
the handlers so a missing field becomes a protocol error instead of a parse
failure.
"""

from typing import Any

from pydantic import BaseModel

from .common import CamelModel


class InboundEnvelope(BaseModel):
    """Client → Server frame."""

    event: str
    data: Any = None


class OutboundEnvelope(BaseModel):
    """Server → Client frame."""

    event: str
    data: Any = None


class UserConnectedPayload(CamelModel):
    """Payload of ``user-connected``."""

    user_id: str | None = None
    username: str | None = None


class PairPayload(CamelModel):
    """Payload naming both ends of a conversation (join, typing, read)."""

    sender_id: str | None = None
    recipient_id: str | None = None


class SendMessagePayload(PairPayload):
    """Payload of ``send-message``."""

    content: str | None = None


class FriendRequestSentPayload(CamelModel):
    """Payload of ``friend-request-sent``."""

    recipient_id: str | None = None
    requester_name: str | None = None


class FriendRequestAcceptedPayload(CamelModel):
    """Payload of ``friend-request-accepted``."""

    requester_id: str | None = None
    accepter_name: str | None = None


class UserTyping(CamelModel):
    """Payload of ``user-typing``."""

    user_id: str
    is_typing: bool


class MessageError(CamelModel):
    """Payload of ``message-error``."""

    error: str
    code: str


class FriendRequestReceived(CamelModel):
    """Payload of ``friend-request-received``."""

    requester_name: str
    message: str


class FriendRequestResponse(CamelModel):
    """Payload of ``friend-request-response``."""

    accepted: bool
    accepter_name: str
    message: str
