"""Process-wide realtime hub.

Bundles the stores, the channel router, the presence registry and the
messaging service so routes and sessions receive one injectable object
instead of reaching for module globals.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from sqlalchemy.orm import Session

from murmur.core.settings import settings
from murmur.realtime.channels import ChannelRouter, Connection
from murmur.realtime.presence import PresenceRegistry
from murmur.realtime.session import RealtimeSession
from murmur.services.blob_storage import LocalBlobStorage
from murmur.services.friendship import FriendshipGraph
from murmur.services.message_store import MessageStore
from murmur.services.messaging import MessagingService

logger = logging.getLogger(__name__)


class RealtimeHub:
    """Shared realtime state for a single-node deployment."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        blob_storage: LocalBlobStorage | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.router = ChannelRouter()
        self.presence = PresenceRegistry(self.router, session_factory)
        self.friendships = FriendshipGraph(session_factory)
        self.messages = MessageStore(session_factory)
        self.messaging = MessagingService(
            self.friendships,
            self.messages,
            router=self.router,
            presence=self.presence,
        )
        self.blob_storage = blob_storage or LocalBlobStorage(
            settings.upload_dir, max_bytes=settings.upload_max_bytes
        )

    @staticmethod
    def new_connection_id() -> str:
        return uuid.uuid4().hex

    def session_for(
        self,
        connection: Connection,
        *,
        authenticated_user_id: str | None = None,
    ) -> RealtimeSession:
        """Create the session state machine for a freshly accepted connection."""
        return RealtimeSession(
            connection,
            router=self.router,
            presence=self.presence,
            messaging=self.messaging,
            authenticated_user_id=authenticated_user_id,
        )

    async def shutdown(self) -> None:
        """Close every live connection and forget all realtime state."""
        connections = await self.router.connections()
        for connection in connections:
            close = getattr(connection, "close", None)
            if close is None:
                continue
            try:
                await close()
            except (ConnectionError, RuntimeError, OSError) as exc:
                logger.debug("Error closing %s during shutdown: %s", connection.id, exc)
        await self.router.clear()
        self.presence.clear()
        logger.info("Realtime hub shut down (%d connections closed)", len(connections))


class _RealtimeHubSingleton:
    """Singleton wrapper for RealtimeHub."""

    _instance: RealtimeHub | None = None

    @classmethod
    def get_instance(cls) -> RealtimeHub:
        """Get or create the singleton hub bound to the application database."""
        if cls._instance is None:
            from murmur.db.session import SessionLocal

            cls._instance = RealtimeHub(SessionLocal)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None


def get_hub() -> RealtimeHub:
    """Return the process-wide realtime hub."""
    return _RealtimeHubSingleton.get_instance()


def reset_hub() -> None:
    """Drop the process-wide hub so the next call builds a fresh one."""
    _RealtimeHubSingleton.reset()
