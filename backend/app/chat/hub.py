"""Realtime broadcast hub for pairwise marketplace conversations.

The hub is the only component that mutates the connection registry. It
receives decoded client frames, updates the registry, and fans frames out to
the right set of connections.

Client Events:
    - register-user: bind the connection to a user id
    - join-chat: subscribe to the room derived from (userId, otherUserId)
    - send-message: broadcast to the room and notify the receiver
    - typing: forward a typing indicator to the other room members

Server Events:
    - receive-message: a message in a room the connection has joined
    - user-typing: a peer started or stopped typing
    - new-message: notification for the receiver, independent of rooms

Payloads are not validated here. A missing field is forwarded as ``null``
and a room or user id that is not a string routes to no connection;
the realtime channel is not the system of record.

Performance Notes:
    - Fan-out uses asyncio.gather() for concurrent delivery
    - Failed connections are pruned during fan-out
"""
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from .notifications import NotificationDispatcher, send_to_connections
from .registry import ConnectionRegistry
from .rooms import ChatError, counterpart, room_id, validate_user_id
from app.messages.schemas import Message

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict], Awaitable[None]]


def server_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _routing_key(value: Any) -> Optional[str]:
    """Room and user ids index the registry; anything but a string routes nowhere."""
    return value if isinstance(value, str) else None


class UnknownEventError(ChatError):
    """Raised by dispatch() for an unrecognised event type."""


class BroadcastHub:
    """Event handler table over a connection registry.

    Events for one connection are handled to completion before the next
    one is read, so delivery order within a room matches arrival order.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        notifier: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.registry = registry
        self.notifier = notifier or NotificationDispatcher(registry)
        self._handlers: Dict[str, Handler] = {
            "register-user": self.on_register_user,
            "join-chat": self.on_join_chat,
            "send-message": self.on_send_message,
            "typing": self.on_typing,
        }

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def connect(self, transport) -> str:
        return self.registry.on_connect(transport)

    def disconnect(self, connection_id: str) -> None:
        self.registry.on_disconnect(connection_id)

    async def dispatch(self, connection_id: str, data: dict) -> None:
        """Route one decoded client frame to its handler.

        Raises:
            UnknownEventError: If ``data["type"]`` names no handler.
        """
        event_type = data.get("type")
        handler = self._handlers.get(event_type)
        if handler is None:
            raise UnknownEventError(f"Unknown event type: {event_type!r}")
        await handler(connection_id, data)

    # =========================================================================
    # Event handlers
    # =========================================================================

    async def on_register_user(self, connection_id: str, data: dict) -> None:
        try:
            user_id = validate_user_id(data.get("userId"))
        except ChatError as e:
            logger.warning(f"[Hub] register-user dropped on {connection_id}: {e}")
            return
        self.registry.register(connection_id, user_id)

    async def on_join_chat(self, connection_id: str, data: dict) -> None:
        user_id = data.get("userId")
        other_user_id = data.get("otherUserId")
        try:
            room = room_id(user_id, other_user_id)
        except ChatError as e:
            logger.warning(f"[Hub] join-chat dropped on {connection_id}: {e}")
            return

        added = self.registry.join_room(connection_id, room)
        logger.info(
            f"[Hub] User {user_id} {'joined' if added else 'rejoined'} room {room} "
            f"({len(self.registry.connections_in_room(room))} connections)"
        )

    async def on_send_message(self, connection_id: str, data: dict) -> None:
        room = _routing_key(data.get("roomId"))
        sender_id = data.get("senderId")
        sender_name = data.get("senderName")
        text = data.get("message")

        receiver_id = _routing_key(data.get("receiverId"))
        if receiver_id is None and room is not None:
            try:
                receiver_id = counterpart(room, sender_id)
            except ChatError as e:
                logger.warning(f"[Hub] Cannot derive receiver from room {room!r}: {e}")

        logger.info(f"[Hub] Message from {sender_id} to {receiver_id} in room {room}")

        await self.broadcast({
            "type": "receive-message",
            "roomId": room,
            "message": text,
            "senderId": sender_id,
            "senderName": sender_name,
            "timestamp": server_now(),
        }, room)

        await self.notifier.notify(receiver_id, sender_id, sender_name, text)

    async def on_typing(self, connection_id: str, data: dict) -> None:
        await self.broadcast_except({
            "type": "user-typing",
            "userId": data.get("userId"),
            "isTyping": data.get("isTyping"),
        }, _routing_key(data.get("roomId")), exclude_connection=connection_id)

    # =========================================================================
    # Persist-then-broadcast
    # =========================================================================

    async def deliver_persisted(self, message: Message, sender_name: Optional[str]) -> None:
        """Relay a message that the durable store has already accepted.

        The room broadcast and the notification both carry the durable id so
        clients can reconcile the echo with their own copy. The notification
        is sent even when no room can be derived from the participants.
        """
        try:
            room = room_id(message.senderId, message.receiverId)
        except ChatError as e:
            logger.warning(f"[Hub] No room for persisted message {message.id}: {e}")
        else:
            await self.broadcast({
                "type": "receive-message",
                "id": message.id,
                "roomId": room,
                "message": message.content,
                "senderId": message.senderId,
                "receiverId": message.receiverId,
                "senderName": sender_name,
                "timestamp": message.createdAt.isoformat(),
            }, room)
        await self.notifier.notify(
            message.receiverId,
            message.senderId,
            sender_name,
            message.content,
            message_id=message.id,
        )

    # =========================================================================
    # Fan-out
    # =========================================================================

    async def broadcast(self, message: dict, room: Optional[str]) -> int:
        """Send to every connection subscribed to ``room``, the sender's included."""
        return await send_to_connections(
            self.registry, self.registry.connections_in_room(room), message
        )

    async def broadcast_except(
        self, message: dict, room: Optional[str], exclude_connection: str
    ) -> int:
        """Send to every connection in ``room`` except one.

        Used for typing indicators where the emitter shouldn't see its own.
        """
        targets = self.registry.connections_in_room(room)
        targets.discard(exclude_connection)
        return await send_to_connections(self.registry, targets, message)
