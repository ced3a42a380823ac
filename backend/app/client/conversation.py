"""One open conversation: history, live messages, typing, read state.

A ``ConversationView`` is used as an async context manager. Entering it
joins the room, subscribes to realtime events, loads durable history and
marks the peer's messages as read. Leaving it releases every subscription,
so no handler outlives the view.

Entries are kept oldest first. History comes from the REST API; realtime
events are appended in arrival order. Events without a durable id get a
synthetic ``local-N`` id. Events whose durable id is already present are
dropped, which absorbs the server echo of the user's own messages.
"""
import itertools
import logging
from typing import Any, List, Optional, Set

from app.chat.rooms import room_id
from app.messages.schemas import utcnow

from .api import ChatEntry, MessagesApi, UserProfile, parse_timestamp
from .connection import RealtimeConnection
from .events import Subscription
from .typing_indicator import TypingNotifier

logger = logging.getLogger(__name__)


class ConversationView:
    """Reconciled view of the conversation between the user and ``other_user_id``."""

    def __init__(
        self,
        connection: RealtimeConnection,
        api: MessagesApi,
        other_user_id: str,
        *,
        sender_name: Optional[str] = None,
        typing_timeout: float = 1.0,
    ) -> None:
        self.connection = connection
        self.api = api
        self.me = connection.user_id
        self.other = other_user_id
        self.room = room_id(self.me, other_user_id)
        self.sender_name = sender_name

        self.entries: List[ChatEntry] = []
        self.peer: Optional[UserProfile] = None
        self.peer_typing = False
        self.loading = True

        self.typing = TypingNotifier(self._emit_typing, timeout=typing_timeout)
        self._known_ids: Set[str] = set()
        self._local_ids = itertools.count(1)
        self._subscriptions: List[Subscription] = []

    async def __aenter__(self) -> "ConversationView":
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def open(self) -> None:
        events = self.connection.events
        # Subscribe before fetching so nothing sent during the fetch is lost.
        self._subscriptions = [
            events.subscribe("receive-message", self._on_receive_message),
            events.subscribe("user-typing", self._on_user_typing),
        ]
        await self.connection.join_chat(self.other)

        history = await self.api.fetch_history(self.other)
        self._merge_history(history)
        await self.api.mark_read(self.other)
        self.peer = await self.api.get_user(self.other)
        self.loading = False
        logger.info(
            f"[Conversation] Opened {self.room} with {len(self.entries)} messages"
        )

    async def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        await self.typing.stop()
        self.typing.close()
        if self.connection.active_peer == self.other:
            self.connection.leave_chat()

    # =========================================================================
    # User actions
    # =========================================================================

    async def keystroke(self) -> None:
        await self.typing.keystroke()

    async def send(self, content: str) -> Optional[ChatEntry]:
        """Send a message through the persist-then-broadcast API.

        If the store rejects the write the text is still shown locally as
        an unconfirmed entry; the failure is logged by the API client.
        """
        if not content or not content.strip():
            return None
        await self.typing.stop()

        entry = await self.api.send_message(self.other, content, self.sender_name)
        if entry is None:
            entry = ChatEntry(
                id=self._next_local_id(),
                sender=self.me,
                content=content,
                timestamp=utcnow(),
                confirmed=False,
            )
        self._append(entry)
        return entry

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def _next_local_id(self) -> str:
        return f"local-{next(self._local_ids)}"

    def _append(self, entry: ChatEntry) -> bool:
        if entry.confirmed:
            if entry.id in self._known_ids:
                return False
            self._known_ids.add(entry.id)
        self.entries.append(entry)
        return True

    def _merge_history(self, history: List[ChatEntry]) -> None:
        live = self.entries
        self.entries = []
        self._known_ids = set()
        for entry in history:
            self._append(entry)
        for entry in live:
            self._append(entry)

    def _belongs_here(self, data: dict) -> bool:
        if data.get("roomId") is not None:
            return data["roomId"] == self.room
        # Roomless frames: membership is additive, so only the peer's own messages count.
        return data.get("senderId") == self.other

    def _on_receive_message(self, data: dict) -> None:
        if not self._belongs_here(data):
            return
        durable_id = data.get("id")
        self._append(ChatEntry(
            id=durable_id or self._next_local_id(),
            sender=data.get("senderId"),
            content=data.get("message"),
            timestamp=parse_timestamp(data.get("timestamp")),
            confirmed=durable_id is not None,
        ))
        if data.get("senderId") == self.other:
            self.peer_typing = False

    def _on_user_typing(self, data: dict) -> None:
        if data.get("userId") == self.other:
            self.peer_typing = bool(data.get("isTyping"))

    async def _emit_typing(self, is_typing: bool) -> None:
        await self.connection.send_typing(self.other, is_typing)
