# tests/test_presence.py
"""Tests for the presence registry."""

from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from murmur.core.errors import InfrastructureError
from murmur.db.time import utcnow
from murmur.models import User
from murmur.realtime.channels import ChannelRouter
from murmur.realtime.presence import STATUS_EVENT, PresenceRegistry
from murmur.services import user_service
from tests.conftest import RecordingConnection


@pytest.fixture()
def router() -> ChannelRouter:
    return ChannelRouter()


@pytest.fixture()
def registry(router: ChannelRouter, session_factory) -> PresenceRegistry:
    return PresenceRegistry(router, session_factory)


def _load(session_factory, user_id: str) -> User:
    with session_factory() as db:
        return db.get(User, user_id)


@pytest.mark.asyncio
async def test_set_online_broadcasts_to_everyone_else(router, registry, session_factory, alice) -> None:
    own = RecordingConnection("own")
    watcher = RecordingConnection("watcher")
    await router.register(own)
    await router.register(watcher)

    info = await registry.set_online(alice.id, own)

    assert info.online is True
    assert info.handle is own
    assert own.frames == []
    [status] = watcher.events(STATUS_EVENT)
    assert status["userId"] == alice.id
    assert status["isOnline"] is True
    assert datetime.fromisoformat(status["lastSeen"]) == info.last_seen

    row = _load(session_factory, alice.id)
    assert row.is_online is True
    assert row.connection_id == "own"


@pytest.mark.asyncio
async def test_set_offline_clears_handle_and_persists(router, registry, session_factory, alice) -> None:
    own = RecordingConnection("own")
    watcher = RecordingConnection("watcher")
    await router.register(watcher)
    online = await registry.set_online(alice.id, own)

    before = utcnow()
    offline = await registry.set_offline(alice.id)

    assert offline.online is False
    assert offline.handle is None
    assert offline.last_seen >= online.last_seen
    looked_up = await registry.lookup(alice.id)
    assert looked_up.online is False
    assert looked_up.last_seen >= before
    assert [s["isOnline"] for s in watcher.events(STATUS_EVENT)] == [True, False]

    row = _load(session_factory, alice.id)
    assert row.is_online is False
    assert row.connection_id is None
    assert alice.id not in registry.online_user_ids()


@pytest.mark.asyncio
async def test_last_writer_wins(registry, alice) -> None:
    first = RecordingConnection("first")
    second = RecordingConnection("second")

    await registry.set_online(alice.id, first)
    await registry.set_online(alice.id, second)

    info = await registry.lookup(alice.id)
    assert info.handle is second


@pytest.mark.asyncio
async def test_inactive_reports_idle_without_going_offline(router, registry, alice) -> None:
    own = RecordingConnection("own")
    watcher = RecordingConnection("watcher")
    await router.register(watcher)
    await registry.set_online(alice.id, own)

    await registry.touch(alice.id, active=False, origin=own)

    assert watcher.events(STATUS_EVENT)[-1]["isOnline"] is False
    info = await registry.lookup(alice.id)
    assert info.online is True
    assert info.handle is own
    assert alice.id in registry.online_user_ids()


@pytest.mark.asyncio
async def test_active_marks_online(router, registry, session_factory, alice) -> None:
    watcher = RecordingConnection("watcher")
    await router.register(watcher)

    info = await registry.touch(alice.id, active=True)

    assert info.online is True
    assert watcher.events(STATUS_EVENT)[-1]["isOnline"] is True
    assert _load(session_factory, alice.id).is_online is True


@pytest.mark.asyncio
async def test_lookup_falls_back_to_stored_last_seen(registry, alice) -> None:
    info = await registry.lookup(alice.id)

    assert info.online is False
    assert info.handle is None
    assert info.last_seen is not None
    assert info.last_seen.tzinfo is not None


@pytest.mark.asyncio
async def test_lookup_unknown_user(registry) -> None:
    info = await registry.lookup("nobody")

    assert info.online is False
    assert info.last_seen is None


@pytest.mark.asyncio
async def test_unknown_user_is_still_tracked_in_memory(registry) -> None:
    conn = RecordingConnection("c1")

    await registry.set_online("ghost", conn)

    assert "ghost" in registry.online_user_ids()


@pytest.mark.asyncio
async def test_persistence_failure_raises_and_skips_broadcast(mocker, router, registry, alice) -> None:
    watcher = RecordingConnection("watcher")
    await router.register(watcher)
    mocker.patch.object(
        user_service,
        "record_presence",
        side_effect=OperationalError("UPDATE user_account", {}, Exception("database is locked")),
    )

    with pytest.raises(InfrastructureError):
        await registry.set_online(alice.id, RecordingConnection("own"))

    assert watcher.frames == []


@pytest.mark.asyncio
async def test_registry_without_database(router) -> None:
    registry = PresenceRegistry(router)
    watcher = RecordingConnection("watcher")
    await router.register(watcher)

    await registry.set_online("u1", RecordingConnection("own"))

    assert registry.online_user_ids() == {"u1"}
    assert watcher.names() == [STATUS_EVENT]


@pytest.mark.asyncio
async def test_clear_forgets_everyone(registry) -> None:
    await registry.set_online("u1", RecordingConnection("c1"))

    registry.clear()

    assert registry.online_user_ids() == set()
