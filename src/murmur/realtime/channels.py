"""Channel routing for realtime events.

Two kinds of channel exist:

- a *pair channel* shared by the two participants of a conversation, whose id
  is derived from both user ids by :func:`pair_channel`;
- a *personal mailbox* per user, whose id is the user id itself.

User ids may not contain :data:`CHANNEL_SEPARATOR`, which keeps pair channel
ids unambiguous and disjoint from mailbox ids.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Protocol

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from murmur.schemas.realtime import OutboundEnvelope

logger = logging.getLogger(__name__)

CHANNEL_SEPARATOR = ":"


class Connection(Protocol):
    """A live client connection able to receive events."""

    id: str

    async def send(self, event: str, data: Any) -> None:
        """Deliver one event frame to the client."""
        ...


class WebSocketConnection:
    """Adapts a FastAPI WebSocket to the :class:`Connection` protocol."""

    def __init__(self, websocket: WebSocket, connection_id: str) -> None:
        self.websocket = websocket
        self.id = connection_id

    async def send(self, event: str, data: Any) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise ConnectionError(f"connection {self.id} is closed")
        try:
            await self.websocket.send_json(OutboundEnvelope(event=event, data=data).model_dump())
        except WebSocketDisconnect as exc:
            raise ConnectionError(f"connection {self.id} is closed") from exc

    async def close(self, code: int = 1001) -> None:
        if self.websocket.application_state == WebSocketState.CONNECTED:
            await self.websocket.close(code=code)

    def __repr__(self) -> str:
        return f"WebSocketConnection({self.id!r})"


def _check_id(user_id: str) -> str:
    if not isinstance(user_id, str) or not user_id:
        raise ValueError("user id must be a non-empty string")
    if CHANNEL_SEPARATOR in user_id:
        raise ValueError(f"user id may not contain {CHANNEL_SEPARATOR!r}: {user_id!r}")
    return user_id


def pair_channel(user_a: str, user_b: str) -> str:
    """Return the channel id shared by two users.

    ``pair_channel(a, b) == pair_channel(b, a)`` and distinct pairs never map
    to the same id.
    """
    low, high = sorted((_check_id(user_a), _check_id(user_b)))
    return f"{low}{CHANNEL_SEPARATOR}{high}"


def mailbox_channel(user_id: str) -> str:
    """Return the personal mailbox channel id of a user."""
    return _check_id(user_id)


class ChannelRouter:
    """Tracks channel membership and fans events out to connections.

    Delivery is at-most-once and best-effort: publishing to a channel with no
    members drops the event, and a connection whose send fails is removed from
    every channel it had joined.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._members: dict[str, dict[str, Connection]] = defaultdict(dict)
        self._channels_of: dict[str, set[str]] = defaultdict(set)
        self._connections: dict[str, Connection] = {}

    async def register(self, connection: Connection) -> None:
        """Make ``connection`` reachable by :meth:`broadcast`."""
        async with self._lock:
            self._connections[connection.id] = connection

    async def join(self, connection: Connection, channel_id: str) -> None:
        """Subscribe ``connection`` to ``channel_id``; joining twice is a no-op."""
        async with self._lock:
            self._connections[connection.id] = connection
            self._members[channel_id][connection.id] = connection
            self._channels_of[connection.id].add(channel_id)

    async def leave(self, connection: Connection, channel_id: str) -> None:
        """Unsubscribe ``connection`` from one channel."""
        async with self._lock:
            self._discard(connection.id, channel_id)

    async def leave_all(self, connection: Connection) -> None:
        """Forget ``connection`` entirely."""
        async with self._lock:
            self._forget(connection.id)

    async def channels_of(self, connection: Connection) -> set[str]:
        """Return the channels ``connection`` is currently joined to."""
        async with self._lock:
            return set(self._channels_of.get(connection.id, ()))

    async def members(self, channel_id: str) -> list[Connection]:
        """Return the connections currently joined to ``channel_id``."""
        async with self._lock:
            return list(self._members.get(channel_id, {}).values())

    async def publish(
        self,
        channel_id: str,
        event: str,
        data: Any,
        *,
        exclude: Connection | None = None,
    ) -> int:
        """Deliver to every member of ``channel_id`` except ``exclude``.

        Returns the number of connections the event was handed to.
        """
        async with self._lock:
            targets = [
                conn
                for conn_id, conn in self._members.get(channel_id, {}).items()
                if exclude is None or conn_id != exclude.id
            ]
        return await self._deliver(targets, event, data)

    async def publish_to_user(
        self,
        user_id: str,
        event: str,
        data: Any,
        *,
        exclude: Connection | None = None,
    ) -> int:
        """Deliver to ``user_id``'s personal mailbox."""
        return await self.publish(mailbox_channel(user_id), event, data, exclude=exclude)

    async def broadcast(
        self,
        event: str,
        data: Any,
        *,
        exclude: Connection | None = None,
    ) -> int:
        """Deliver to every registered connection except ``exclude``."""
        async with self._lock:
            targets = [
                conn
                for conn_id, conn in self._connections.items()
                if exclude is None or conn_id != exclude.id
            ]
        return await self._deliver(targets, event, data)

    async def send(self, connection: Connection, event: str, data: Any) -> bool:
        """Deliver directly to one connection."""
        return await self._deliver([connection], event, data) == 1

    async def connections(self) -> list[Connection]:
        """Return every registered connection."""
        async with self._lock:
            return list(self._connections.values())

    async def clear(self) -> None:
        """Drop all membership state."""
        async with self._lock:
            self._members.clear()
            self._channels_of.clear()
            self._connections.clear()

    async def _deliver(self, targets: list[Connection], event: str, data: Any) -> int:
        if not targets:
            return 0

        delivered = 0
        dead: list[Connection] = []
        for conn in targets:
            try:
                await conn.send(event, data)
            except Exception as exc:
                logger.debug("Dropping connection %s after failed send: %s", conn.id, exc)
                dead.append(conn)
            else:
                delivered += 1

        if dead:
            async with self._lock:
                for conn in dead:
                    self._forget(conn.id)
        return delivered

    def _discard(self, connection_id: str, channel_id: str) -> None:
        members = self._members.get(channel_id)
        if members is not None:
            members.pop(connection_id, None)
            if not members:
                self._members.pop(channel_id, None)
        channels = self._channels_of.get(connection_id)
        if channels is not None:
            channels.discard(channel_id)

    def _forget(self, connection_id: str) -> None:
        for channel_id in list(self._channels_of.get(connection_id, ())):
            self._discard(connection_id, channel_id)
        self._channels_of.pop(connection_id, None)
        self._connections.pop(connection_id, None)
