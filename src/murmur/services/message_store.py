"""Persistence for direct messages."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from murmur.db.time import utcnow
from murmur.models import Message, MessageType


@dataclass(frozen=True)
class NewMessage:
    """Fields required to create a message record."""

    sender_id: str
    recipient_id: str
    content: str
    message_type: MessageType = MessageType.TEXT
    file_path: str | None = None
    file_size: int | None = None
    file_name: str | None = None


@dataclass(frozen=True)
class ReadReceipt:
    """Outcome of a bulk read acknowledgment."""

    sender_id: str
    recipient_id: str
    count: int
    read_at: datetime


class MessageStore:
    """Creates, lists and acknowledges messages.

    Records are never deleted; the only mutation after creation is the
    one-way unread → read transition done in bulk by :meth:`mark_read_bulk`.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create(self, record: NewMessage) -> Message:
        """Persist ``record`` and return the stored row with both parties loaded."""
        with self._session_factory() as db:
            message = Message(
                sender_id=record.sender_id,
                recipient_id=record.recipient_id,
                content=record.content,
                message_type=record.message_type,
                file_path=record.file_path,
                file_size=record.file_size,
                file_name=record.file_name,
                is_read=False,
            )
            db.add(message)
            db.commit()
            db.refresh(message)
            _ = message.sender.username, message.recipient.username
            return message

    def get(self, message_id: int) -> Message | None:
        """Return a message by id."""
        with self._session_factory() as db:
            return db.get(Message, message_id)

    def find_between(self, user_a: str, user_b: str, limit: int = 50) -> list[Message]:
        """Return the latest ``limit`` messages exchanged by the pair, oldest first."""
        with self._session_factory() as db:
            latest = db.scalars(
                select(Message)
                .where(
                    or_(
                        and_(Message.sender_id == user_a, Message.recipient_id == user_b),
                        and_(Message.sender_id == user_b, Message.recipient_id == user_a),
                    )
                )
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
            ).all()
        return list(reversed(latest))

    def mark_read_bulk(self, sender_id: str, recipient_id: str) -> ReadReceipt:
        """Flag every unread message from ``sender_id`` to ``recipient_id`` as read.

        The ``is_read = false`` filter is evaluated by the single UPDATE
        statement, so rows inserted after it executes stay unread.
        """
        with self._session_factory() as db:
            read_at = utcnow()
            result = db.execute(
                update(Message)
                .where(
                    Message.sender_id == sender_id,
                    Message.recipient_id == recipient_id,
                    Message.is_read.is_(False),
                )
                .values(is_read=True, read_at=read_at)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        return ReadReceipt(
            sender_id=sender_id,
            recipient_id=recipient_id,
            count=result.rowcount or 0,
            read_at=read_at,
        )

    def unread_counts(self, user_id: str) -> dict[str, int]:
        """Return unread message counts addressed to ``user_id`` keyed by sender."""
        with self._session_factory() as db:
            rows = db.execute(
                select(Message.sender_id, func.count(Message.id))
                .where(Message.recipient_id == user_id, Message.is_read.is_(False))
                .group_by(Message.sender_id)
            ).all()
        return {sender_id: count for sender_id, count in rows}
