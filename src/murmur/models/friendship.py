# src/murmur/models/friendship.py
"""Models describing relationship edges between users."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from murmur.db.session import Base
from murmur.db.time import utcnow
from murmur.models.user import User


class FriendshipStatus(str, enum.Enum):
    """Lifecycle of a relationship edge."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    BLOCKED = "blocked"


def normalize_pair(user_a: str, user_b: str) -> tuple[str, str]:
    """Return the pair in canonical (low, high) order."""
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


class Friendship(Base):
    """Directed request over an unordered pair of users.

    ``user_low_id``/``user_high_id`` hold the normalized pair so the unique
    constraint allows at most one edge per pair regardless of who asked.
    """

    __tablename__ = "friendship"
    __table_args__ = (
        UniqueConstraint("user_low_id", "user_high_id", name="uq_friendship_pair"),
        Index("ix_friendship_requester_status", "requester_id", "status"),
        Index("ix_friendship_recipient_status", "recipient_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    requester_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False
    )
    recipient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False
    )
    user_low_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_high_id: Mapped[str] = mapped_column(String(36), nullable=False)

    status: Mapped[FriendshipStatus] = mapped_column(
        Enum(FriendshipStatus, native_enum=False, length=16),
        nullable=False,
        default=FriendshipStatus.PENDING,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    requester: Mapped[User] = relationship(User, foreign_keys=[requester_id], lazy="joined")
    recipient: Mapped[User] = relationship(User, foreign_keys=[recipient_id], lazy="joined")

    def other_party(self, user_id: str) -> str:
        """Return the id on the opposite side of the edge from ``user_id``."""
        return self.recipient_id if self.requester_id == user_id else self.requester_id
