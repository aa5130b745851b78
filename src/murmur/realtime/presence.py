"""Presence registry: who is online and which connection reaches them."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from murmur.core.errors import InfrastructureError
from murmur.db.time import ensure_utc, utcnow
from murmur.realtime.channels import ChannelRouter, Connection
from murmur.schemas.common import PresenceStatus
from murmur.services import user_service

logger = logging.getLogger(__name__)

STATUS_EVENT = "user-status-update"


@dataclass
class PresenceInfo:
    """Presence snapshot for one user."""

    online: bool
    last_seen: datetime | None
    handle: Connection | None = None


class PresenceRegistry:
    """Process-wide map of user id to live presence.

    The in-memory map is authoritative for reachability; every mutation is
    also written through to the user's row so HTTP clients can read it, and
    broadcast as ``user-status-update`` to every connection other than the
    one that caused it. A user holds a single handle: binding a second
    connection replaces the first (last writer wins).
    """

    def __init__(
        self,
        router: ChannelRouter,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self._router = router
        self._session_factory = session_factory
        self._entries: dict[str, PresenceInfo] = {}

    async def set_online(
        self,
        user_id: str,
        handle: Connection | None,
        *,
        origin: Connection | None = None,
    ) -> PresenceInfo:
        """Mark ``user_id`` online through ``handle`` and stamp last-seen."""
        now = utcnow()
        info = PresenceInfo(online=True, last_seen=now, handle=handle)
        self._entries[user_id] = info
        await self._persist(
            user_id,
            last_seen=now,
            is_online=True,
            connection_id=handle.id if handle is not None else None,
        )
        await self._announce(user_id, True, now, origin if origin is not None else handle)
        return info

    async def set_offline(
        self,
        user_id: str,
        *,
        origin: Connection | None = None,
    ) -> PresenceInfo:
        """Mark ``user_id`` offline, stamp last-seen and drop the handle."""
        now = utcnow()
        info = PresenceInfo(online=False, last_seen=now, handle=None)
        self._entries[user_id] = info
        await self._persist(user_id, last_seen=now, is_online=False, clear_connection=True)
        await self._announce(user_id, False, now, origin)
        return info

    async def touch(
        self,
        user_id: str,
        *,
        active: bool | None = None,
        origin: Connection | None = None,
    ) -> PresenceInfo:
        """Refresh last-seen for an activity ping.

        ``active=True`` also marks the user online; ``active=False`` reports
        the user as idle to other clients without touching the stored online
        flag or the handle; ``None`` only stamps the time.
        """
        now = utcnow()
        current = self._entries.get(user_id)
        online = current.online if current is not None else False
        if active:
            online = True
        info = PresenceInfo(
            online=online,
            last_seen=now,
            handle=current.handle if current is not None else None,
        )
        self._entries[user_id] = info
        await self._persist(user_id, last_seen=now, is_online=True if active else None)
        await self._announce(user_id, online if active is None else active, now, origin)
        return info

    async def lookup(self, user_id: str) -> PresenceInfo:
        """Return the presence of ``user_id``.

        Users unknown to this process are offline; their last-seen comes from
        the stored row when one exists.
        """
        info = self._entries.get(user_id)
        if info is not None:
            return info
        last_seen = None
        if self._session_factory is not None:
            user = await asyncio.to_thread(self._load_user, user_id)
            if user is not None:
                last_seen = ensure_utc(user.last_seen)
        return PresenceInfo(online=False, last_seen=last_seen, handle=None)

    def online_user_ids(self) -> set[str]:
        """Return the users currently marked online in this process."""
        return {user_id for user_id, info in self._entries.items() if info.online}

    def clear(self) -> None:
        """Forget every entry; used on shutdown."""
        self._entries.clear()

    async def _announce(
        self,
        user_id: str,
        is_online: bool,
        last_seen: datetime,
        origin: Connection | None,
    ) -> None:
        status = PresenceStatus(user_id=user_id, is_online=is_online, last_seen=last_seen)
        await self._router.broadcast(STATUS_EVENT, status.to_wire(), exclude=origin)

    async def _persist(self, user_id: str, **values: object) -> None:
        if self._session_factory is None:
            return
        try:
            found = await asyncio.to_thread(self._write, user_id, values)
        except SQLAlchemyError as exc:
            logger.error("Failed to persist presence for %s: %s", user_id, exc, exc_info=True)
            raise InfrastructureError("Failed to update presence") from exc
        if not found:
            logger.debug("Presence update for unknown user %s", user_id)

    def _write(self, user_id: str, values: dict[str, object]) -> bool:
        assert self._session_factory is not None
        with self._session_factory() as db:
            return user_service.record_presence(db, user_id, **values)  # type: ignore[arg-type]

    def _load_user(self, user_id: str):  # noqa: ANN202
        assert self._session_factory is not None
        with self._session_factory() as db:
            return user_service.get_user(db, user_id)
