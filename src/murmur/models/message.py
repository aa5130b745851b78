# src/murmur/models/message.py
"""Models describing direct messages between users."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from murmur.db.session import Base
from murmur.db.time import utcnow
from murmur.models.user import User


class MessageType(str, enum.Enum):
    """Kind of payload a message carries."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"


class Message(Base):
    """Message exchanged between two friends.

    Rows are immutable once written except for ``is_read``/``read_at``, which
    flip exactly once when the recipient acknowledges the conversation.
    """

    __tablename__ = "message"
    __table_args__ = (
        Index("ix_message_sender_recipient", "sender_id", "recipient_id"),
        Index("ix_message_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sender_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_account.id"), nullable=False
    )
    recipient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_account.id"), nullable=False
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(
        Enum(MessageType, native_enum=False, length=16),
        nullable=False,
        default=MessageType.TEXT,
    )

    # Attachment metadata; the bytes live in blob storage.
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    sender: Mapped[User] = relationship(User, foreign_keys=[sender_id], lazy="joined")
    recipient: Mapped[User] = relationship(User, foreign_keys=[recipient_id], lazy="joined")
