"""
Unit tests for room routing.

Tests cover:
- Join success and denial, including event order
- Moving between rooms
- Room messages, their persistence and fan-out
- Membership re-checks across persistence awaits
- Typing indicators and rosters
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from TermChat.core.server.chat import ChatCore
from TermChat.core.server.interfaces import ErrorKind
from TermChat.test.fakes import (
    BrokenMessageLog,
    GatedMessageLog,
    SlowFirstMessageLog,
    connect_user,
)


class TestJoin:
    """Tests for RoomRouter.join."""

    @pytest.mark.asyncio
    async def test_join_success_event_order(self, core, alice):
        alice.clear()

        result = await core.rooms.join(alice.connection_id, "alice", "general")

        assert result.ok
        assert alice.names() == ["join-room-success", "room-history", "room-users"]
        assert alice.data("join-room-success") == [{"room": "general"}]
        assert alice.data("room-history") == [[]]
        assert alice.data("room-users") == [["alice"]]
        assert core.registry.lookup_by_connection(alice.connection_id).current_room == "general"
        assert core.delivery.subscribers("general") == {alice.connection_id}

    @pytest.mark.asyncio
    async def test_join_sends_recent_history_oldest_first(self, core, message_log, alice):
        await core.rooms.join(alice.connection_id, "alice", "general")
        for text in ["one", "two", "three"]:
            await core.rooms.send_message(alice.connection_id, "general", text)
        bob = await connect_user(core, "bob")
        bob.clear()

        await core.rooms.join(bob.connection_id, "bob", "general")

        history = bob.data("room-history")[0]
        assert [m["text"] for m in history] == ["one", "two", "three"]
        assert all(m["room"] == "general" and m["from"] == "alice" for m in history)

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, directory, message_log):
        core = ChatCore(directory, message_log, history_limit=2)
        alice = await connect_user(core, "alice")
        await core.rooms.join(alice.connection_id, "alice", "general")
        for text in ["one", "two", "three"]:
            await core.rooms.send_message(alice.connection_id, "general", text)
        alice.clear()

        await core.rooms.join(alice.connection_id, "alice", "general")

        assert [m["text"] for m in alice.data("room-history")[0]] == ["two", "three"]

    @pytest.mark.asyncio
    async def test_roster_goes_to_every_member(self, core, alice, bob):
        await core.rooms.join(alice.connection_id, "alice", "general")
        alice.clear()

        await core.rooms.join(bob.connection_id, "bob", "general")

        assert sorted(alice.data("room-users")[-1]) == ["alice", "bob"]
        assert sorted(bob.data("room-users")[-1]) == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_denied_join_changes_nothing(self, core, alice, carol):
        await core.rooms.join(alice.connection_id, "alice", "general")
        alice.clear()
        carol.clear()

        result = await core.rooms.join(carol.connection_id, "carol", "general")

        assert not result.ok
        assert result.kind is ErrorKind.ACCESS_DENIED
        assert carol.names() == ["join-room-error"]
        assert carol.data("join-room-error") == [{"msg": "You are not allowed to join this room"}]
        assert alice.sent == []
        assert core.registry.lookup_by_connection(carol.connection_id).current_room is None
        assert core.delivery.subscribers("general") == {alice.connection_id}

    @pytest.mark.asyncio
    async def test_denied_join_keeps_previous_room(self, core, carol):
        await core.rooms.join(carol.connection_id, "carol", "random")

        await core.rooms.join(carol.connection_id, "carol", "general")

        assert core.registry.lookup_by_connection(carol.connection_id).current_room == "random"

    @pytest.mark.asyncio
    async def test_banned_user_cannot_join(self, core):
        mallory = await connect_user(core, "mallory")

        result = await core.rooms.join(mallory.connection_id, "mallory", "vault")

        assert result.kind is ErrorKind.ACCESS_DENIED

    @pytest.mark.asyncio
    async def test_unknown_room(self, core, alice):
        alice.clear()

        result = await core.rooms.join(alice.connection_id, "alice", "nowhere")

        assert result.kind is ErrorKind.ACCESS_DENIED
        assert alice.data("join-room-error") == [{"msg": "Room does not exist"}]

    @pytest.mark.asyncio
    async def test_invalid_room_name_is_rejected_before_lookup(self, core, directory, alice):
        directory.find_room = AsyncMock()
        alice.clear()

        result = await core.rooms.join(alice.connection_id, "alice", "no spaces!")

        assert result.kind is ErrorKind.VALIDATION
        assert alice.names() == ["join-room-error"]
        directory.find_room.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_directory_failure_denies(self, core, directory, alice):
        directory.find_room = AsyncMock(side_effect=ConnectionError("down"))
        alice.clear()

        result = await core.rooms.join(alice.connection_id, "alice", "general")

        assert result.kind is ErrorKind.DEPENDENCY
        assert alice.data("join-room-error") == [{"msg": "Permission check failed"}]
        assert core.registry.lookup_by_connection(alice.connection_id).current_room is None

    @pytest.mark.asyncio
    async def test_switching_rooms_updates_old_roster(self, core, alice, bob):
        await core.rooms.join(alice.connection_id, "alice", "general")
        await core.rooms.join(bob.connection_id, "bob", "general")
        bob.clear()

        await core.rooms.join(alice.connection_id, "alice", "random")

        assert bob.data("room-users") == [["bob"]]
        assert core.delivery.subscribers("general") == {bob.connection_id}
        assert core.delivery.subscribers("random") == {alice.connection_id}
        assert list(core.registry.members_of_room("general")) == ["bob"]

    @pytest.mark.asyncio
    async def test_concurrent_joins_leave_one_subscription(self, core, alice, bob):
        await core.rooms.join(alice.connection_id, "alice", "general")
        await core.rooms.join(bob.connection_id, "bob", "general")

        results = await asyncio.gather(
            core.rooms.join(alice.connection_id, "alice", "random"),
            core.rooms.join(alice.connection_id, "alice", "vault"),
        )

        current = core.registry.lookup_by_connection(alice.connection_id).current_room
        subscribed = [room for room in ("general", "random", "vault")
                      if alice.connection_id in core.delivery.subscribers(room)]
        assert subscribed == [current]
        assert [r.data["room"] for r in results if r.ok] == [current]
        assert all(r.kind is ErrorKind.NOT_IN_ROOM for r in results if not r.ok)
        assert core.delivery.subscribers("general") == {bob.connection_id}

    @pytest.mark.asyncio
    async def test_join_overtaken_while_loading_history(self, core, message_log, alice, bob):
        await core.rooms.join(bob.connection_id, "bob", "general")
        loading = asyncio.Event()
        release = asyncio.Event()

        async def slow_room_history(room, limit):
            loading.set()
            await release.wait()
            return []

        message_log.room_history = slow_room_history
        alice.clear()
        bob.clear()
        join = asyncio.create_task(core.rooms.join(alice.connection_id, "alice", "general"))
        await loading.wait()
        await core.rooms.leave(alice.connection_id, "general")
        release.set()

        result = await join

        assert result.kind is ErrorKind.NOT_IN_ROOM
        assert alice.names() == ["join-room-success"]
        assert core.delivery.subscribers("general") == {bob.connection_id}
        assert bob.data("room-users") == [["bob"]]

    @pytest.mark.asyncio
    async def test_history_failure_keeps_the_join(self, directory):
        core = ChatCore(directory, BrokenMessageLog())
        alice = await connect_user(core, "alice")
        alice.clear()

        result = await core.rooms.join(alice.connection_id, "alice", "general")

        assert result.ok
        assert alice.names() == ["join-room-success", "error", "room-users"]
        assert alice.data("error") == [{"kind": "dependency", "msg": "Could not load room history"}]
        assert core.registry.lookup_by_connection(alice.connection_id).current_room == "general"

    @pytest.mark.asyncio
    async def test_connection_gone_during_access_check(self, core, directory, alice):
        lookup_started = asyncio.Event()
        release = asyncio.Event()
        room = await directory.find_room("general")

        async def slow_find_room(name):
            lookup_started.set()
            await release.wait()
            return room

        directory.find_room = slow_find_room
        join = asyncio.create_task(core.rooms.join(alice.connection_id, "alice", "general"))
        await lookup_started.wait()
        await core.disconnect(alice.connection_id)
        release.set()

        result = await join

        assert result.kind is ErrorKind.INTERNAL
        assert list(core.registry.members_of_room("general")) == []
        assert core.delivery.subscribers("general") == set()


class TestLeave:
    """Tests for RoomRouter.leave."""

    @pytest.mark.asyncio
    async def test_leave_updates_remaining_members(self, core, alice, bob):
        await core.rooms.join(alice.connection_id, "alice", "general")
        await core.rooms.join(bob.connection_id, "bob", "general")
        alice.clear()
        bob.clear()

        result = await core.rooms.leave(alice.connection_id, "general")

        assert result.ok
        assert bob.data("room-users") == [["bob"]]
        assert alice.sent == []
        assert core.registry.lookup_by_connection(alice.connection_id).current_room is None

    @pytest.mark.asyncio
    async def test_leave_other_room_is_refused(self, core, alice):
        await core.rooms.join(alice.connection_id, "alice", "general")

        result = await core.rooms.leave(alice.connection_id, "random")

        assert result.kind is ErrorKind.NOT_IN_ROOM
        assert core.registry.lookup_by_connection(alice.connection_id).current_room == "general"

    @pytest.mark.asyncio
    async def test_join_leave_round_trip(self, core, alice):
        await core.rooms.join(alice.connection_id, "alice", "general")
        await core.rooms.leave(alice.connection_id, "general")

        assert core.registry.lookup_by_connection(alice.connection_id).current_room is None
        assert list(core.registry.members_of_room("general")) == []
        assert core.delivery.subscribers("general") == set()


class TestRoomMessages:
    """Tests for RoomRouter.send_message."""

    @pytest.mark.asyncio
    async def test_message_reaches_room_including_sender(self, core, message_log, alice, bob, carol):
        await core.rooms.join(alice.connection_id, "alice", "general")
        await core.rooms.join(bob.connection_id, "bob", "general")
        await core.rooms.join(carol.connection_id, "carol", "random")
        for connection in (alice, bob, carol):
            connection.clear()

        result = await core.rooms.send_message(alice.connection_id, "general", "hi")

        assert result.ok
        for connection in (alice, bob):
            (payload,) = connection.data("room-message")
            assert payload["room"] == "general"
            assert payload["user"] == "alice"
            assert payload["msg"] == "hi"
            assert isinstance(payload["timestamp"], float)
        assert carol.sent == []
        assert [m.text for m in message_log.messages] == ["hi"]

    @pytest.mark.asyncio
    async def test_message_is_in_later_history(self, core, message_log, alice):
        await core.rooms.join(alice.connection_id, "alice", "general")
        await core.rooms.send_message(alice.connection_id, "general", "first")
        await core.rooms.send_message(alice.connection_id, "general", "second")

        history = await message_log.room_history("general", 20)

        assert [m.text for m in history] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_message_text_is_sanitised(self, core, message_log, alice):
        await core.rooms.join(alice.connection_id, "alice", "general")

        await core.rooms.send_message(alice.connection_id, "general", "<b>x</b><script>alert(1)</script>")

        assert message_log.messages[0].text == "&lt;b&gt;x&lt;/b&gt;"

    @pytest.mark.asyncio
    async def test_message_to_room_not_joined(self, core, message_log, alice):
        await core.rooms.join(alice.connection_id, "alice", "general")

        result = await core.rooms.send_message(alice.connection_id, "random", "sneaky")

        assert result.kind is ErrorKind.NOT_IN_ROOM
        assert result.message == "You are not in this room."
        assert message_log.messages == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "x" * 1001])
    async def test_invalid_text(self, core, message_log, alice, text):
        await core.rooms.join(alice.connection_id, "alice", "general")

        result = await core.rooms.send_message(alice.connection_id, "general", text)

        assert result.kind is ErrorKind.VALIDATION
        assert message_log.messages == []

    @pytest.mark.asyncio
    async def test_persistence_failure_suppresses_broadcast(self, directory):
        core = ChatCore(directory, BrokenMessageLog())
        alice = await connect_user(core, "alice")
        await core.rooms.join(alice.connection_id, "alice", "general")
        alice.clear()

        result = await core.rooms.send_message(alice.connection_id, "general", "hi")

        assert result.kind is ErrorKind.DEPENDENCY
        assert result.message == "Server error"
        assert alice.events("room-message") == []

    @pytest.mark.asyncio
    async def test_leave_during_persistence_suppresses_broadcast(self, directory):
        log = GatedMessageLog()
        log.gate.set()
        core = ChatCore(directory, log)
        alice = await connect_user(core, "alice")
        bob = await connect_user(core, "bob")
        await core.rooms.join(alice.connection_id, "alice", "general")
        await core.rooms.join(bob.connection_id, "bob", "general")
        bob.clear()
        log.gate.clear()

        send = asyncio.create_task(core.rooms.send_message(alice.connection_id, "general", "late"))
        while log.pending == 0:
            await asyncio.sleep(0)
        await core.rooms.leave(alice.connection_id, "general")
        log.gate.set()
        result = await send

        assert result.kind is ErrorKind.NOT_IN_ROOM
        assert bob.events("room-message") == []

    @pytest.mark.asyncio
    async def test_fan_out_preserves_acceptance_order(self, directory):
        core = ChatCore(directory, SlowFirstMessageLog(delay=0.05))
        alice = await connect_user(core, "alice")
        bob = await connect_user(core, "bob")
        await core.rooms.join(alice.connection_id, "alice", "general")
        await core.rooms.join(bob.connection_id, "bob", "general")
        bob.clear()

        await asyncio.gather(
            core.rooms.send_message(alice.connection_id, "general", "first"),
            core.rooms.send_message(bob.connection_id, "general", "second"),
        )

        assert [m["msg"] for m in bob.data("room-message")] == ["first", "second"]
        assert len(core.rooms._lanes) == 0


class TestRosterAndTyping:
    """Tests for get-users and typing indicators."""

    @pytest.mark.asyncio
    async def test_send_roster_to_caller_only(self, core, alice, bob):
        await core.rooms.join(alice.connection_id, "alice", "general")
        await core.rooms.join(bob.connection_id, "bob", "general")
        alice.clear()
        bob.clear()

        result = await core.rooms.send_roster(alice.connection_id, "general")

        assert sorted(result.data["users"]) == ["alice", "bob"]
        assert sorted(alice.data("users-list")[0]) == ["alice", "bob"]
        assert bob.sent == []

    @pytest.mark.asyncio
    async def test_typing_goes_to_others_in_room(self, core, alice, bob):
        await core.rooms.join(alice.connection_id, "alice", "general")
        await core.rooms.join(bob.connection_id, "bob", "general")
        alice.clear()
        bob.clear()

        await core.rooms.typing(alice.connection_id, "general")
        await core.rooms.typing(alice.connection_id, "general", active=False)

        assert bob.names() == ["user-typing", "user-stop-typing"]
        assert bob.data("user-typing") == [{"username": "alice"}]
        assert alice.sent == []

    @pytest.mark.asyncio
    async def test_typing_outside_room_is_refused(self, core, alice, bob):
        await core.rooms.join(bob.connection_id, "bob", "general")
        bob.clear()

        result = await core.rooms.typing(alice.connection_id, "general")

        assert result.kind is ErrorKind.NOT_IN_ROOM
        assert bob.sent == []
