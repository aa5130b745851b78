"""Friendship graph backed by the ``friendship`` table.

The messaging core only ever asks :meth:`FriendshipGraph.are_friends`; the
mutating calls belong to the friends HTTP surface.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from murmur.core.errors import AuthorizationError, NotFoundError, ValidationError
from murmur.models import Friendship, FriendshipStatus, User
from murmur.models.friendship import normalize_pair
from murmur.services import user_service

logger = logging.getLogger(__name__)


class FriendshipGraph:
    """Pairwise relationship edges with at most one edge per unordered pair."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    # Reads

    def are_friends(self, user_a: str, user_b: str) -> bool:
        """Return True when an accepted edge joins the two users, in either direction."""
        low, high = normalize_pair(user_a, user_b)
        with self._session_factory() as db:
            edge_id = db.scalar(
                select(Friendship.id).where(
                    Friendship.user_low_id == low,
                    Friendship.user_high_id == high,
                    Friendship.status == FriendshipStatus.ACCEPTED,
                )
            )
        return edge_id is not None

    def list_friends(self, user_id: str) -> list[User]:
        """Return the users holding an accepted edge with ``user_id``."""
        with self._session_factory() as db:
            return self._friends(db, user_id)

    def friend_ids(self, user_id: str) -> set[str]:
        """Return the ids of ``user_id``'s accepted friends."""
        return {friend.id for friend in self.list_friends(user_id)}

    def pending_requests(self, user_id: str) -> list[Friendship]:
        """Requests waiting for ``user_id`` to answer, newest first."""
        with self._session_factory() as db:
            return list(
                db.scalars(
                    select(Friendship)
                    .where(
                        Friendship.recipient_id == user_id,
                        Friendship.status == FriendshipStatus.PENDING,
                    )
                    .order_by(Friendship.created_at.desc())
                )
            )

    def sent_requests(self, user_id: str) -> list[Friendship]:
        """Requests ``user_id`` sent that are still pending, newest first."""
        with self._session_factory() as db:
            return list(
                db.scalars(
                    select(Friendship)
                    .where(
                        Friendship.requester_id == user_id,
                        Friendship.status == FriendshipStatus.PENDING,
                    )
                    .order_by(Friendship.created_at.desc())
                )
            )

    def mutual_friends(self, user_a: str, user_b: str) -> list[User]:
        """Return the friends shared by both users."""
        with self._session_factory() as db:
            others = {friend.id for friend in self._friends(db, user_b)}
            return [friend for friend in self._friends(db, user_a) if friend.id in others]

    def search_users(
        self,
        user_id: str,
        query: str,
        *,
        min_length: int = 2,
        limit: int = 10,
    ) -> list[User]:
        """Find users ``user_id`` has no relationship with yet.

        Queries shorter than ``min_length`` (after trimming) return nothing.
        """
        if not query or len(query.strip()) < min_length:
            return []
        with self._session_factory() as db:
            excluded = {user_id}
            for edge in db.scalars(
                select(Friendship).where(
                    or_(Friendship.requester_id == user_id, Friendship.recipient_id == user_id)
                )
            ):
                excluded.add(edge.other_party(user_id))
            return list(user_service.search_users(db, query, exclude_ids=excluded, limit=limit))

    # Mutations

    def send_request(self, requester_id: str, recipient_id: str) -> Friendship:
        """Open a pending request from ``requester_id`` to ``recipient_id``.

        A previously declined edge is re-opened in the new direction.

        Raises:
            ValidationError: On self-requests or when an edge is already pending/accepted.
            NotFoundError: If the recipient does not exist.
            AuthorizationError: If the pair is blocked.
        """
        if not recipient_id:
            raise ValidationError("Recipient ID required")
        if requester_id == recipient_id:
            raise ValidationError("Cannot send friend request to yourself")

        with self._session_factory() as db:
            if user_service.get_user(db, recipient_id) is None:
                raise NotFoundError("User not found")

            edge = self._find_edge(db, requester_id, recipient_id)
            if edge is not None:
                if edge.status == FriendshipStatus.ACCEPTED:
                    raise ValidationError("You are already friends")
                if edge.status == FriendshipStatus.PENDING:
                    raise ValidationError("Friend request already sent")
                if edge.status == FriendshipStatus.BLOCKED:
                    raise AuthorizationError("Friend request not allowed")
                edge.requester_id = requester_id
                edge.recipient_id = recipient_id
                edge.status = FriendshipStatus.PENDING
            else:
                low, high = normalize_pair(requester_id, recipient_id)
                edge = Friendship(
                    requester_id=requester_id,
                    recipient_id=recipient_id,
                    user_low_id=low,
                    user_high_id=high,
                    status=FriendshipStatus.PENDING,
                )
                db.add(edge)

            db.commit()
            db.refresh(edge)
            self._load_parties(edge)
            logger.info("Friend request %s: %s -> %s", edge.id, requester_id, recipient_id)
            return edge

    def accept(self, friendship_id: int, user_id: str) -> Friendship:
        """Accept a pending request addressed to ``user_id``."""
        with self._session_factory() as db:
            edge = self._pending_for(db, friendship_id, user_id)
            edge.status = FriendshipStatus.ACCEPTED
            db.commit()
            db.refresh(edge)
            self._load_parties(edge)
            return edge

    def decline(self, friendship_id: int, user_id: str) -> Friendship:
        """Decline a pending request addressed to ``user_id``."""
        with self._session_factory() as db:
            edge = self._pending_for(db, friendship_id, user_id)
            edge.status = FriendshipStatus.DECLINED
            db.commit()
            db.refresh(edge)
            self._load_parties(edge)
            return edge

    def remove(self, user_id: str, friend_id: str) -> None:
        """Delete the accepted edge between ``user_id`` and ``friend_id``."""
        if not friend_id:
            raise ValidationError("Friend ID required")
        with self._session_factory() as db:
            edge = self._find_edge(db, user_id, friend_id)
            if edge is None or edge.status != FriendshipStatus.ACCEPTED:
                raise NotFoundError("Friendship not found")
            db.delete(edge)
            db.commit()

    # Helpers

    @staticmethod
    def _find_edge(db: Session, user_a: str, user_b: str) -> Friendship | None:
        low, high = normalize_pair(user_a, user_b)
        return db.scalars(
            select(Friendship).where(
                Friendship.user_low_id == low,
                Friendship.user_high_id == high,
            )
        ).first()

    @staticmethod
    def _friends(db: Session, user_id: str) -> list[User]:
        edges = db.scalars(
            select(Friendship).where(
                or_(Friendship.requester_id == user_id, Friendship.recipient_id == user_id),
                Friendship.status == FriendshipStatus.ACCEPTED,
            )
        )
        return [
            edge.recipient if edge.requester_id == user_id else edge.requester
            for edge in edges
        ]

    @staticmethod
    def _pending_for(db: Session, friendship_id: int, user_id: str) -> Friendship:
        edge = db.scalars(
            select(Friendship).where(
                Friendship.id == friendship_id,
                Friendship.recipient_id == user_id,
                Friendship.status == FriendshipStatus.PENDING,
            )
        ).first()
        if edge is None:
            raise NotFoundError("Friend request not found")
        return edge

    @staticmethod
    def _load_parties(edge: Friendship) -> None:
        # Touch relationships while the session is open so callers can read them detached.
        _ = edge.requester.username, edge.recipient.username
