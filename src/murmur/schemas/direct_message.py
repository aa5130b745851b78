"""Direct message-related Pydantic schemas."""

from datetime import datetime

from pydantic import Field, field_serializer

from murmur.db.time import ensure_utc
from murmur.models.message import MessageType

from .common import CamelModel, UserSummary
from .user import UserResponse


class MessageCreate(CamelModel):
    """Schema for sending a message over HTTP."""

    recipient_id: str | None = Field(None, description="Id of the receiving friend")
    content: str | None = Field(None, description="Message text; trimmed before storage")


class MessageResponse(CamelModel):
    """A persisted message enriched with both parties' display names."""

    id: int
    sender_id: str
    recipient_id: str
    sender: UserSummary
    recipient: UserSummary
    content: str
    message_type: MessageType
    file_path: str | None = None
    file_size: int | None = None
    file_name: str | None = None
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime

    @field_serializer("read_at", "created_at")
    def serialize_timestamps(self, value: datetime | None) -> datetime | None:
        """Report timestamps in UTC."""
        return ensure_utc(value)


class MessageDelivered(CamelModel):
    """Acknowledgment sent to the sender once a message is stored."""

    message_id: int
    timestamp: datetime

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> datetime:
        """Report timestamps in UTC."""
        return ensure_utc(value)  # type: ignore[return-value]


class ReadReceiptResponse(CamelModel):
    """Payload of ``messages-read`` events and the HTTP read call."""

    recipient_id: str
    read_at: datetime
    count: int = 0

    @field_serializer("read_at")
    def serialize_read_at(self, value: datetime) -> datetime:
        """Report timestamps in UTC."""
        return ensure_utc(value)  # type: ignore[return-value]


class UnreadCountsResponse(CamelModel):
    """Unread messages per sender plus the overall total."""

    counts: dict[str, int]
    total: int


class ContactResponse(UserResponse):
    """A friend listed in the messaging sidebar."""

    unread_count: int = 0
