"""Single realtime connection per client session, with reconnection.

The connection re-establishes itself after a drop using a bounded number of
attempts and a capped, doubling delay (1s, 2s, 4s, 5s, 5s by default). Every
time it (re)connects it registers the user again and rejoins the open
conversation, which the server treats as a no-op if already joined.

Failures never propagate to callers. When attempts are exhausted the
connection stays in the ``disconnected`` state; UIs show that passively.
"""
import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Optional

import websockets

from app.chat.rooms import room_id
from app.config import get_config

from .events import EventStream

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class RealtimeConnection:
    """WebSocket client for the chat hub.

    Incoming frames are published on ``events`` by their ``type``. Two local
    events are also published: ``connect`` after registration on every
    (re)connect and ``disconnect`` after every drop.

    Attributes:
        url: WebSocket endpoint, e.g. ``ws://localhost:5000/ws/chat``.
        user_id: Identity registered on every connect.
        active_peer: Other participant of the open conversation, if any.
    """

    def __init__(
        self,
        url: str,
        user_id: str,
        *,
        reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        reconnect_delay_max: float = 5.0,
        connect: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.url = url
        self.user_id = user_id
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.reconnect_delay_max = reconnect_delay_max
        self._connect = connect or websockets.connect

        self.events = EventStream()
        self.state = ConnectionState.DISCONNECTED
        self.connection_id: Optional[str] = None
        self.active_peer: Optional[str] = None
        self.reconnect_count = 0

        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self._ever_connected = False
        self._connected = asyncio.Event()

    @classmethod
    def from_config(cls, user_id: str, config=None, **kwargs) -> "RealtimeConnection":
        settings = (config or get_config()).client
        return cls(
            settings.ws_url,
            user_id,
            reconnect_attempts=settings.reconnect_attempts,
            reconnect_delay=settings.reconnect_delay,
            reconnect_delay_max=settings.reconnect_delay_max,
            **kwargs,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the background connect/reconnect loop (idempotent)."""
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.create_task(self._run())

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait until connected; returns False on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def close(self) -> None:
        """Stop reconnecting and close the socket."""
        self._closing = True
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"[Client] Error while closing socket: {e}")
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._set_disconnected()

    async def __aenter__(self) -> "RealtimeConnection":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt ``attempt`` (1-based)."""
        return min(self.reconnect_delay * (2 ** max(attempt - 1, 0)), self.reconnect_delay_max)

    async def _run(self) -> None:
        failures = 0
        while not self._closing:
            self.state = ConnectionState.CONNECTING
            try:
                async with self._connect(self.url) as ws:
                    self._ws = ws
                    self.state = ConnectionState.CONNECTED
                    if self._ever_connected:
                        self.reconnect_count += 1
                    self._ever_connected = True
                    failures = 0
                    await self._on_open()
                    async for raw in ws:
                        await self._handle_frame(raw)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"[Client] Connection to {self.url} failed: {e}")

            was_connected = self._ws is not None
            self._ws = None
            self._set_disconnected()
            if was_connected:
                await self.events.emit("disconnect", {})
            if self._closing:
                break

            failures += 1
            if failures > self.reconnect_attempts:
                logger.warning(
                    f"[Client] Giving up after {self.reconnect_attempts} reconnect attempts"
                )
                break
            delay = self.backoff_delay(failures)
            logger.info(f"[Client] Reconnecting in {delay:.1f}s (attempt {failures})")
            await asyncio.sleep(delay)

    def _set_disconnected(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.connection_id = None
        self._connected.clear()

    async def _on_open(self) -> None:
        await self.send("register-user", userId=self.user_id)
        if self.active_peer is not None:
            await self.send("join-chat", userId=self.user_id, otherUserId=self.active_peer)
        self._connected.set()
        await self.events.emit("connect", {"userId": self.user_id})

    async def _handle_frame(self, raw: Any) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"[Client] Ignoring non-JSON frame: {raw!r}")
            return
        if not isinstance(data, dict):
            return
        event_type = data.get("type")
        if event_type == "connected":
            self.connection_id = data.get("connectionId")
        await self.events.emit(event_type, data)

    # =========================================================================
    # Outbound events
    # =========================================================================

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and self._ws is not None

    async def send(self, event_type: str, **fields: Any) -> bool:
        """Send one frame. Returns False (and drops it) while disconnected."""
        if not self.connected:
            logger.debug(f"[Client] Not connected; dropped {event_type}")
            return False
        try:
            await self._ws.send(json.dumps({"type": event_type, **fields}))
            return True
        except Exception as e:
            logger.debug(f"[Client] Send of {event_type} failed: {e}")
            return False

    async def join_chat(self, other_user_id: str) -> bool:
        """Open a conversation; remembered so reconnects rejoin it."""
        self.active_peer = other_user_id
        return await self.send("join-chat", userId=self.user_id, otherUserId=other_user_id)

    def leave_chat(self) -> None:
        """Forget the open conversation (server-side membership is additive)."""
        self.active_peer = None

    async def send_typing(self, other_user_id: str, is_typing: bool) -> bool:
        return await self.send(
            "typing",
            roomId=room_id(self.user_id, other_user_id),
            userId=self.user_id,
            isTyping=is_typing,
        )

    async def send_chat_message(
        self, other_user_id: str, text: str, sender_name: Optional[str] = None
    ) -> bool:
        """Transient broadcast without persistence (``send-message``)."""
        return await self.send(
            "send-message",
            roomId=room_id(self.user_id, other_user_id),
            message=text,
            senderId=self.user_id,
            senderName=sender_name,
            receiverId=other_user_id,
        )
