"""Unit tests for BroadcastHub and NotificationDispatcher with fake sockets."""
from datetime import datetime, timezone

import pytest

from app.chat.hub import BroadcastHub, UnknownEventError
from app.chat.notifications import NotificationDispatcher, send_to_connections
from app.chat.registry import ConnectionRegistry
from app.chat.rooms import room_id
from app.messages.schemas import Message


class FakeSocket:
    """Records every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    def types(self):
        return [m["type"] for m in self.sent]


@pytest.fixture
def hub():
    registry = ConnectionRegistry()
    return BroadcastHub(registry, NotificationDispatcher(registry))


async def connect_as(hub, user_id, other=None, fail=False):
    """Connect a fake socket, register it and optionally join a room."""
    sock = FakeSocket(fail=fail)
    cid = hub.connect(sock)
    await hub.dispatch(cid, {"type": "register-user", "userId": user_id})
    if other is not None:
        await hub.dispatch(cid, {"type": "join-chat", "userId": user_id, "otherUserId": other})
    return cid, sock


class TestDispatch:
    """Handler table routing."""

    @pytest.mark.asyncio
    async def test_unknown_event_raises(self, hub):
        cid = hub.connect(FakeSocket())
        with pytest.raises(UnknownEventError):
            await hub.dispatch(cid, {"type": "shout"})

    @pytest.mark.asyncio
    async def test_missing_type_raises(self, hub):
        cid = hub.connect(FakeSocket())
        with pytest.raises(UnknownEventError):
            await hub.dispatch(cid, {"userId": "u1"})

    @pytest.mark.asyncio
    async def test_register_without_user_id_is_ignored(self, hub):
        cid = hub.connect(FakeSocket())
        await hub.dispatch(cid, {"type": "register-user"})
        assert hub.registry.get_record(cid).user_id is None
        assert hub.registry.online_users() == []

    @pytest.mark.asyncio
    async def test_join_chat_with_invalid_ids_is_dropped(self, hub):
        cid = hub.connect(FakeSocket())
        await hub.dispatch(cid, {"type": "join-chat", "userId": "u1"})
        await hub.dispatch(cid, {"type": "join-chat", "userId": "a-b", "otherUserId": "u2"})
        assert hub.registry.get_record(cid).current_room_id is None

    @pytest.mark.asyncio
    async def test_join_chat_uses_canonical_room(self, hub):
        cid, _ = await connect_as(hub, "u2", other="u1")
        assert hub.registry.connections_in_room("u1-u2") == {cid}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", [123, "seller-1", ["u1"], {"id": "u1"}])
    async def test_register_with_invalid_user_id_is_dropped(self, hub, bad):
        cid = hub.connect(FakeSocket())
        await hub.dispatch(cid, {"type": "register-user", "userId": bad})
        assert hub.registry.get_record(cid).user_id is None
        assert hub.registry.online_users() == []

    @pytest.mark.asyncio
    async def test_non_string_routing_ids_do_not_raise(self, hub):
        alice_cid, alice = await connect_as(hub, "alice", other="bob")
        _, bob = await connect_as(hub, "bob", other="alice")

        await hub.dispatch(alice_cid, {
            "type": "typing", "roomId": ["alice", "bob"], "userId": "alice", "isTyping": True,
        })
        await hub.dispatch(alice_cid, {
            "type": "send-message",
            "roomId": {"room": "alice-bob"},
            "message": "hi",
            "senderId": "alice",
            "receiverId": ["bob"],
        })

        assert alice.sent == []
        assert bob.sent == []

    def test_disconnect_cleans_registry(self, hub):
        cid = hub.connect(FakeSocket())
        hub.disconnect(cid)
        assert hub.registry.connection_count() == 0


class TestSendMessage:
    """send-message: room broadcast plus receiver notification."""

    @pytest.mark.asyncio
    async def test_room_broadcast_includes_sender(self, hub):
        alice_cid, alice = await connect_as(hub, "alice", other="bob")
        _, bob = await connect_as(hub, "bob", other="alice")

        await hub.dispatch(alice_cid, {
            "type": "send-message",
            "roomId": room_id("alice", "bob"),
            "message": "Is the car still available?",
            "senderId": "alice",
            "senderName": "Alice",
        })

        echoed = [m for m in alice.sent if m["type"] == "receive-message"]
        assert len(echoed) == 1
        assert echoed[0]["roomId"] == "alice-bob"
        assert echoed[0]["message"] == "Is the car still available?"
        assert echoed[0]["senderId"] == "alice"
        assert echoed[0]["senderName"] == "Alice"
        assert datetime.fromisoformat(echoed[0]["timestamp"]).tzinfo is not None

        assert bob.types() == ["receive-message", "new-message"]
        assert bob.sent[1] == {
            "type": "new-message",
            "senderId": "alice",
            "senderName": "Alice",
            "message": "Is the car still available?",
        }
        assert "new-message" not in alice.types()

    @pytest.mark.asyncio
    async def test_notification_reaches_receiver_outside_room(self, hub):
        alice_cid, _ = await connect_as(hub, "alice", other="bob")
        _, bob = await connect_as(hub, "bob")

        await hub.dispatch(alice_cid, {
            "type": "send-message",
            "roomId": "alice-bob",
            "message": "hi",
            "senderId": "alice",
            "senderName": "Alice",
        })

        assert bob.types() == ["new-message"]

    @pytest.mark.asyncio
    async def test_explicit_receiver_overrides_room_derivation(self, hub):
        alice_cid, _ = await connect_as(hub, "alice", other="bob")
        _, bob = await connect_as(hub, "bob")
        _, carol = await connect_as(hub, "carol")

        await hub.dispatch(alice_cid, {
            "type": "send-message",
            "roomId": "alice-bob",
            "message": "hi",
            "senderId": "alice",
            "receiverId": "carol",
        })

        assert carol.types() == ["new-message"]
        assert bob.sent == []

    @pytest.mark.asyncio
    async def test_every_receiver_session_notified(self, hub):
        alice_cid, _ = await connect_as(hub, "alice", other="bob")
        _, tab1 = await connect_as(hub, "bob")
        _, tab2 = await connect_as(hub, "bob")

        await hub.dispatch(alice_cid, {
            "type": "send-message",
            "roomId": "alice-bob",
            "message": "hello",
            "senderId": "alice",
        })

        assert tab1.types() == ["new-message"]
        assert tab2.types() == ["new-message"]

    @pytest.mark.asyncio
    async def test_missing_fields_forwarded_as_null(self, hub):
        alice_cid, alice = await connect_as(hub, "alice", other="bob")

        await hub.dispatch(alice_cid, {
            "type": "send-message",
            "roomId": "alice-bob",
            "senderId": "alice",
        })

        frame = alice.sent[-1]
        assert frame["type"] == "receive-message"
        assert frame["message"] is None
        assert frame["senderName"] is None

    @pytest.mark.asyncio
    async def test_malformed_room_delivers_nothing(self, hub):
        alice_cid, alice = await connect_as(hub, "alice", other="bob")

        await hub.dispatch(alice_cid, {
            "type": "send-message",
            "roomId": "not-a-valid-room",
            "message": "x",
            "senderId": "alice",
        })

        assert alice.sent == []

    @pytest.mark.asyncio
    async def test_room_order_matches_send_order(self, hub):
        alice_cid, _ = await connect_as(hub, "alice", other="bob")
        _, bob = await connect_as(hub, "bob", other="alice")

        for text in ("one", "two", "three"):
            await hub.dispatch(alice_cid, {
                "type": "send-message",
                "roomId": "alice-bob",
                "message": text,
                "senderId": "alice",
            })

        received = [m["message"] for m in bob.sent if m["type"] == "receive-message"]
        assert received == ["one", "two", "three"]


class TestTyping:
    """typing: forwarded to the room, never echoed to the emitter."""

    @pytest.mark.asyncio
    async def test_typing_excludes_emitter(self, hub):
        alice_cid, alice = await connect_as(hub, "alice", other="bob")
        _, bob = await connect_as(hub, "bob", other="alice")

        await hub.dispatch(alice_cid, {
            "type": "typing",
            "roomId": "alice-bob",
            "userId": "alice",
            "isTyping": True,
        })

        assert alice.sent == []
        assert bob.sent == [{"type": "user-typing", "userId": "alice", "isTyping": True}]

    @pytest.mark.asyncio
    async def test_typing_reaches_emitters_other_tabs(self, hub):
        tab1, first = await connect_as(hub, "alice", other="bob")
        _, second = await connect_as(hub, "alice", other="bob")

        await hub.dispatch(tab1, {
            "type": "typing",
            "roomId": "alice-bob",
            "userId": "alice",
            "isTyping": False,
        })

        assert first.sent == []
        assert second.types() == ["user-typing"]


class TestDeliverPersisted:
    """Relay of stored messages."""

    @pytest.mark.asyncio
    async def test_frames_carry_durable_id(self, hub):
        _, alice = await connect_as(hub, "alice", other="bob")
        _, bob = await connect_as(hub, "bob", other="alice")
        message = Message(
            id="m-1",
            senderId="alice",
            receiverId="bob",
            content="Price negotiable?",
            createdAt=datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc),
        )

        await hub.deliver_persisted(message, "Alice")

        echo = alice.sent[-1]
        assert echo["type"] == "receive-message"
        assert echo["id"] == "m-1"
        assert echo["roomId"] == "alice-bob"
        assert echo["receiverId"] == "bob"
        assert echo["timestamp"] == "2026-05-01T12:00:00+00:00"

        assert bob.types() == ["receive-message", "new-message"]
        assert bob.sent[1]["id"] == "m-1"
        assert bob.sent[1]["senderName"] == "Alice"

    @pytest.mark.asyncio
    async def test_notifies_when_no_room_can_be_derived(self, hub):
        _, receiver = await connect_as(hub, "bob")
        message = Message(id="m-2", senderId="legacy-user", receiverId="bob", content="hello")

        await hub.deliver_persisted(message, "Legacy")

        assert receiver.types() == ["new-message"]
        assert receiver.sent[0]["id"] == "m-2"


class TestFanOut:
    """Failed sends prune the dead connection."""

    @pytest.mark.asyncio
    async def test_dead_connection_pruned(self, hub):
        alice_cid, alice = await connect_as(hub, "alice", other="bob")
        bob_cid, _ = await connect_as(hub, "bob", other="alice", fail=True)

        delivered = await hub.broadcast({"type": "receive-message"}, "alice-bob")

        assert delivered == 1
        assert alice.types() == ["receive-message"]
        assert hub.registry.get_record(bob_cid) is None
        assert not hub.registry.is_online("bob")
        assert hub.registry.connections_in_room("alice-bob") == {alice_cid}

    @pytest.mark.asyncio
    async def test_empty_room(self, hub):
        assert await hub.broadcast({"type": "receive-message"}, "nobody-here") == 0
        assert await hub.broadcast({"type": "receive-message"}, None) == 0

    @pytest.mark.asyncio
    async def test_send_to_unknown_connection_is_not_counted(self, hub):
        assert await send_to_connections(hub.registry, ["ghost"], {"type": "x"}) == 0


class TestNotificationDispatcher:
    """Registration-based routing."""

    @pytest.mark.asyncio
    async def test_offline_receiver(self, hub):
        assert await hub.notifier.notify("bob", "alice", "Alice", "hi") == 0

    @pytest.mark.asyncio
    async def test_no_receiver(self, hub):
        assert await hub.notifier.notify(None, "alice", "Alice", "hi") == 0

    @pytest.mark.asyncio
    async def test_optional_message_id(self, hub):
        _, bob = await connect_as(hub, "bob")

        await hub.notifier.notify("bob", "alice", "Alice", "hi")
        await hub.notifier.notify("bob", "alice", "Alice", "hi", message_id="m-9")

        assert "id" not in bob.sent[0]
        assert bob.sent[1]["id"] == "m-9"
