# tests/test_session.py
"""Tests for the per-connection realtime session state machine."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from murmur.models import User
from murmur.realtime.channels import mailbox_channel, pair_channel
from murmur.realtime.hub import RealtimeHub
from murmur.realtime.presence import STATUS_EVENT
from murmur.realtime.session import (
    FRIEND_REQUEST_RECEIVED_EVENT,
    FRIEND_REQUEST_RESPONSE_EVENT,
    MESSAGE_DELIVERED_EVENT,
    MESSAGE_ERROR_EVENT,
    USER_TYPING_EVENT,
    RealtimeSession,
    SessionState,
)
from murmur.services.messaging import NEW_MESSAGE_EVENT
from tests.conftest import RecordingConnection


async def _open(hub: RealtimeHub, name: str, **kwargs) -> tuple[RealtimeSession, RecordingConnection]:
    conn = RecordingConnection(name)
    session = hub.session_for(conn, **kwargs)
    await session.open()
    return session, conn


async def _identify(hub: RealtimeHub, user: User) -> tuple[RealtimeSession, RecordingConnection]:
    session, conn = await _open(hub, f"{user.username}-conn")
    await session.dispatch("user-connected", {"userId": user.id, "username": user.username})
    return session, conn


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_user_connected_binds_identity(self, hub, alice) -> None:
        _, watcher = await _open(hub, "watcher")

        session, conn = await _identify(hub, alice)

        assert session.state is SessionState.IDENTIFIED
        assert session.user_id == alice.id
        assert mailbox_channel(alice.id) in await hub.router.channels_of(conn)
        assert (await hub.presence.lookup(alice.id)).handle is conn
        [status] = watcher.events(STATUS_EVENT)
        assert status["userId"] == alice.id
        assert status["isOnline"] is True
        assert conn.events(STATUS_EVENT) == []

    @pytest.mark.asyncio
    async def test_user_connected_without_user_id_is_ignored(self, hub) -> None:
        session, _ = await _open(hub, "anon")

        await session.dispatch("user-connected", {"username": "nobody"})

        assert session.state is SessionState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_token_must_match_user_id(self, hub, alice, bob) -> None:
        session, _ = await _open(hub, "c1", authenticated_user_id=bob.id)

        await session.dispatch("user-connected", {"userId": alice.id})

        assert session.state is SessionState.UNAUTHENTICATED
        assert hub.presence.online_user_ids() == set()

    @pytest.mark.asyncio
    async def test_cannot_rebind_to_another_user(self, hub, alice, bob) -> None:
        session, _ = await _identify(hub, alice)

        await session.dispatch("user-connected", {"userId": bob.id})

        assert session.user_id == alice.id
        assert bob.id not in hub.presence.online_user_ids()

    @pytest.mark.asyncio
    async def test_close_without_identity_leaves_presence_alone(self, hub) -> None:
        _, watcher = await _open(hub, "watcher")
        session, _ = await _open(hub, "anon")

        await session.close()

        assert session.state is SessionState.CLOSED
        assert watcher.frames == []
        assert hub.presence.online_user_ids() == set()

    @pytest.mark.asyncio
    async def test_close_marks_identified_user_offline(self, hub, alice) -> None:
        _, watcher = await _open(hub, "watcher")
        session, conn = await _identify(hub, alice)

        await session.close()

        assert session.state is SessionState.CLOSED
        assert alice.id not in hub.presence.online_user_ids()
        assert watcher.events(STATUS_EVENT)[-1]["isOnline"] is False
        assert await hub.router.channels_of(conn) == set()

    @pytest.mark.asyncio
    async def test_closed_session_ignores_events(self, hub, alice) -> None:
        session, _ = await _open(hub, "c1")
        await session.close()

        await session.dispatch("user-connected", {"userId": alice.id})

        assert session.state is SessionState.CLOSED
        assert hub.presence.online_user_ids() == set()

    @pytest.mark.asyncio
    async def test_manual_disconnect_then_transport_close(self, hub, alice) -> None:
        _, watcher = await _open(hub, "watcher")
        session, conn = await _identify(hub, alice)

        await session.dispatch("user-disconnected", alice.id)

        assert session.state is SessionState.UNAUTHENTICATED
        assert alice.id not in hub.presence.online_user_ids()
        assert [s["isOnline"] for s in watcher.events(STATUS_EVENT)] == [True, False]
        assert conn.events(STATUS_EVENT) == []

        await session.close()
        assert len(watcher.events(STATUS_EVENT)) == 2

    @pytest.mark.asyncio
    async def test_inactive_and_active(self, hub, alice) -> None:
        _, watcher = await _open(hub, "watcher")
        session, _ = await _identify(hub, alice)

        await session.dispatch("user-inactive", {"userId": alice.id})
        await session.dispatch("user-active", alice.id)

        assert [s["isOnline"] for s in watcher.events(STATUS_EVENT)] == [True, False, True]

    @pytest.mark.asyncio
    async def test_activity_for_someone_else_is_rejected(self, hub, alice, bob) -> None:
        _, watcher = await _open(hub, "watcher")
        session, _ = await _identify(hub, alice)

        await session.dispatch("user-inactive", bob.id)

        assert [s["userId"] for s in watcher.events(STATUS_EVENT)] == [alice.id]


class TestFrames:
    @pytest.mark.asyncio
    async def test_malformed_and_unknown_frames_are_ignored(self, hub, alice) -> None:
        session, conn = await _identify(hub, alice)

        await session.handle_frame("not a dict")
        await session.handle_frame({"data": {}})
        await session.handle_frame({"event": "launch-rockets", "data": {}})
        await session.handle_frame({"event": "typing-start", "data": "oops"})

        assert session.state is SessionState.IDENTIFIED
        assert conn.frames == []


class TestConversation:
    @pytest.mark.asyncio
    async def test_join_chat_requires_identity(self, hub, alice, bob) -> None:
        session, conn = await _open(hub, "anon")

        await session.dispatch("join-chat", {"senderId": alice.id, "recipientId": bob.id})

        assert await hub.router.channels_of(conn) == set()

    @pytest.mark.asyncio
    async def test_join_chat_subscribes_to_pair_channel(self, hub, alice, bob) -> None:
        session, conn = await _identify(hub, alice)

        await session.dispatch("join-chat", {"senderId": alice.id, "recipientId": bob.id})

        assert pair_channel(alice.id, bob.id) in await hub.router.channels_of(conn)

    @pytest.mark.asyncio
    async def test_send_message_acknowledges_sender(self, hub, alice, bob, friends, count_messages) -> None:
        session, conn = await _identify(hub, alice)

        await session.dispatch(
            "send-message", {"senderId": alice.id, "recipientId": bob.id, "content": "hi"}
        )

        [ack] = conn.events(MESSAGE_DELIVERED_EVENT)
        assert isinstance(ack["messageId"], int)
        assert ack["timestamp"]
        assert conn.events(MESSAGE_ERROR_EVENT) == []
        assert count_messages() == 1

    @pytest.mark.asyncio
    async def test_send_message_between_strangers(self, hub, alice, carol, count_messages) -> None:
        session, conn = await _identify(hub, alice)

        await session.dispatch(
            "send-message", {"senderId": alice.id, "recipientId": carol.id, "content": "hi"}
        )

        [error] = conn.events(MESSAGE_ERROR_EVENT)
        assert error == {"error": "You can only message friends", "code": "authorization_error"}
        assert conn.events(MESSAGE_DELIVERED_EVENT) == []
        assert count_messages() == 0

    @pytest.mark.asyncio
    async def test_send_message_missing_content(self, hub, alice, bob, friends) -> None:
        session, conn = await _identify(hub, alice)

        await session.dispatch("send-message", {"senderId": alice.id, "recipientId": bob.id})

        [error] = conn.events(MESSAGE_ERROR_EVENT)
        assert error["error"] == "Missing required field: content"
        assert error["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_send_message_as_someone_else(self, hub, alice, bob, friends, count_messages) -> None:
        session, conn = await _identify(hub, alice)

        await session.dispatch(
            "send-message", {"senderId": bob.id, "recipientId": alice.id, "content": "hi"}
        )

        assert conn.events(MESSAGE_ERROR_EVENT)[0]["code"] == "authorization_error"
        assert count_messages() == 0

    @pytest.mark.asyncio
    async def test_send_message_store_failure(self, mocker, hub, alice, bob, friends) -> None:
        session, conn = await _identify(hub, alice)
        mocker.patch.object(
            hub.messages,
            "create",
            side_effect=OperationalError("INSERT INTO message", {}, Exception("disk full")),
        )

        await session.dispatch(
            "send-message", {"senderId": alice.id, "recipientId": bob.id, "content": "hi"}
        )

        [error] = conn.events(MESSAGE_ERROR_EVENT)
        assert error == {"error": "Failed to send message", "code": "infrastructure_error"}

    @pytest.mark.asyncio
    async def test_new_message_reaches_recipient_mailbox(self, hub, alice, bob, friends) -> None:
        alice_session, _ = await _identify(hub, alice)
        _, bob_conn = await _identify(hub, bob)

        await alice_session.dispatch(
            "send-message", {"senderId": alice.id, "recipientId": bob.id, "content": "hey"}
        )

        [payload] = bob_conn.events(NEW_MESSAGE_EVENT)
        assert payload["content"] == "hey"

    @pytest.mark.asyncio
    async def test_typing_reaches_partner_only(self, hub, alice, bob) -> None:
        alice_session, alice_conn = await _identify(hub, alice)
        bob_session, bob_conn = await _identify(hub, bob)
        await alice_session.dispatch("join-chat", {"senderId": alice.id, "recipientId": bob.id})
        await bob_session.dispatch("join-chat", {"senderId": bob.id, "recipientId": alice.id})

        await alice_session.dispatch("typing-start", {"senderId": alice.id, "recipientId": bob.id})
        await alice_session.dispatch("typing-stop", {"senderId": alice.id, "recipientId": bob.id})

        assert bob_conn.events(USER_TYPING_EVENT) == [
            {"userId": alice.id, "isTyping": True},
            {"userId": alice.id, "isTyping": False},
        ]
        assert alice_conn.events(USER_TYPING_EVENT) == []

    @pytest.mark.asyncio
    async def test_mark_read_only_by_recipient(self, hub, alice, bob, friends) -> None:
        alice_session, _ = await _identify(hub, alice)
        await hub.messaging.send_message(bob.id, alice.id, "unread")

        await alice_session.dispatch("mark-messages-read", {"senderId": alice.id, "recipientId": bob.id})
        assert (await hub.messaging.unread_counts(alice.id)).total == 1

        await alice_session.dispatch("mark-messages-read", {"senderId": bob.id, "recipientId": alice.id})
        assert (await hub.messaging.unread_counts(alice.id)).total == 0


class TestFriendNotifications:
    @pytest.mark.asyncio
    async def test_friend_request_sent_is_relayed(self, hub, alice, bob) -> None:
        alice_session, _ = await _identify(hub, alice)
        _, bob_conn = await _identify(hub, bob)

        await alice_session.dispatch("friend-request-sent", {"recipientId": bob.id})

        [notice] = bob_conn.events(FRIEND_REQUEST_RECEIVED_EVENT)
        assert notice == {"requesterName": "alice", "message": "alice sent you a friend request"}

    @pytest.mark.asyncio
    async def test_friend_request_accepted_is_relayed(self, hub, alice, bob) -> None:
        _, alice_conn = await _identify(hub, alice)
        bob_session, _ = await _identify(hub, bob)

        await bob_session.dispatch(
            "friend-request-accepted", {"requesterId": alice.id, "accepterName": "Bob B."}
        )

        [notice] = alice_conn.events(FRIEND_REQUEST_RESPONSE_EVENT)
        assert notice["accepted"] is True
        assert notice["accepterName"] == "Bob B."
