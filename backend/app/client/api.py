"""REST client for the durable message API.

History responses are normalised because callers may face several envelope
shapes: ``{data: {messages}}``, ``{messages}``, or a bare list. Sender and
receiver may be plain ids or embedded user objects.

Failures degrade instead of raising: history becomes ``[]``, a profile
lookup becomes a placeholder identity, a failed send returns ``None``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

import httpx

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "User"


@dataclass
class ChatEntry:
    """One rendered line of a conversation.

    Attributes:
        id: Durable store id, or a synthetic ``local-N`` id for realtime
            events the store has not confirmed.
        sender: Sender user id.
        content: Message text.
        timestamp: When the message was created (UTC).
        confirmed: True when ``id`` came from the durable store.
    """
    id: str
    sender: Optional[str]
    content: Optional[str]
    timestamp: datetime
    confirmed: bool = True


@dataclass
class UserProfile:
    id: str
    name: str = PLACEHOLDER_NAME
    email: Optional[str] = None
    placeholder: bool = False


def _user_ref(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("_id") or value.get("id")
    return value


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or datetime; falls back to now (UTC)."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
    else:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_messages(body: Any) -> List[dict]:
    """Pull the message list out of any supported envelope."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, dict) and isinstance(data.get("messages"), list):
            return data["messages"]
        if isinstance(body.get("messages"), list):
            return body["messages"]
    return []


def to_entry(raw: dict) -> ChatEntry:
    return ChatEntry(
        id=str(raw.get("_id") or raw.get("id")),
        sender=_user_ref(raw.get("sender", raw.get("senderId"))),
        content=raw.get("content", raw.get("message")),
        timestamp=parse_timestamp(raw.get("createdAt") or raw.get("timestamp")),
    )


def normalize_history(body: Any) -> List[ChatEntry]:
    """Convert a history response into entries ordered oldest first."""
    entries = [to_entry(raw) for raw in extract_messages(body) if isinstance(raw, dict)]
    # sorted() is stable, so equal timestamps keep server order.
    return sorted(entries, key=lambda e: e.timestamp)


class MessagesApi:
    """Async client for ``/api/messages`` authenticated as one user."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        *,
        identity_header: str = "X-User-Id",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.user_id = user_id
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._client.headers[identity_header] = user_id

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "MessagesApi":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def fetch_history(self, other_user_id: str) -> List[ChatEntry]:
        try:
            response = await self._client.get(f"/api/messages/{other_user_id}")
            response.raise_for_status()
            return normalize_history(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[Client] Error fetching history with {other_user_id}: {e}")
            return []

    async def send_message(
        self, receiver_id: str, content: str, sender_name: Optional[str] = None
    ) -> Optional[ChatEntry]:
        """Persist a message; the server relays it in realtime afterwards."""
        try:
            response = await self._client.post(
                "/api/messages",
                json={"receiverId": receiver_id, "content": content, "senderName": sender_name},
            )
            response.raise_for_status()
            body = response.json()
            raw = (body.get("data") or {}).get("message") or body.get("message")
            return to_entry(raw) if isinstance(raw, dict) else None
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error(f"[Client] Error saving message to {receiver_id}: {e}")
            return None

    async def mark_read(self, other_user_id: str) -> bool:
        try:
            response = await self._client.put(f"/api/messages/{other_user_id}/read")
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.info(f"[Client] Error marking messages from {other_user_id} as read: {e}")
            return False

    async def get_user(self, user_id: str) -> UserProfile:
        """Look up a profile from the auth service; placeholder on failure."""
        try:
            response = await self._client.get(f"/api/auth/user/{user_id}")
            response.raise_for_status()
            user = response.json().get("user") or {}
            return UserProfile(
                id=user_id,
                name=user.get("name") or PLACEHOLDER_NAME,
                email=user.get("email"),
            )
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.info(f"[Client] Profile lookup for {user_id} failed: {e}")
            return UserProfile(id=user_id, placeholder=True)
