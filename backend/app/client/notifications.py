"""Client-local message notifications.

Notifications are created from ``new-message`` events and live only in
memory: a restart loses them, and durable history is recovered from the
message store instead. The most recent notification is shown as a popup that
dismisses itself after a fixed timeout (5 seconds by default); dismissal
removes the notification.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .events import EventStream, Subscription

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """Attributes:
        id: Time-based id in milliseconds, strictly increasing per center.
        senderId: User who sent the message.
        senderName: Display name of the sender.
        message: Message text.
        timestamp: When the notification was received (UTC).
        isRead: Set when the user opens the notification.
    """
    id: int
    senderId: Optional[str]
    senderName: Optional[str]
    message: Optional[str]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    isRead: bool = False


class NotificationCenter:
    """Newest-first notification list with an unread counter and a popup."""

    def __init__(
        self,
        popup_timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.popup_timeout = popup_timeout
        self._clock = clock
        self.notifications: List[Notification] = []
        self.unread_count = 0
        self.current_popup: Optional[Notification] = None
        self._last_id = 0
        self._popup_timer: Optional[asyncio.Task] = None

    def _next_id(self) -> int:
        candidate = int(self._clock() * 1000)
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return candidate

    def add(
        self,
        sender_id: Optional[str],
        sender_name: Optional[str],
        message: Optional[str],
    ) -> Notification:
        notification = Notification(
            id=self._next_id(),
            senderId=sender_id,
            senderName=sender_name,
            message=message,
        )
        self.notifications.insert(0, notification)
        self.unread_count += 1
        self._show_popup(notification)
        return notification

    def get(self, notification_id: int) -> Optional[Notification]:
        for notification in self.notifications:
            if notification.id == notification_id:
                return notification
        return None

    def remove(self, notification_id: int) -> None:
        self.notifications = [n for n in self.notifications if n.id != notification_id]

    def dismiss(self, notification_id: int) -> None:
        """Remove a notification and close the popup (close, reply, or timeout)."""
        self.remove(notification_id)
        self._cancel_popup_timer()
        self.current_popup = None

    def mark_read(self, notification_id: int) -> None:
        notification = self.get(notification_id)
        if notification is None or notification.isRead:
            return
        notification.isRead = True
        self.unread_count = max(0, self.unread_count - 1)

    def clear_all(self) -> None:
        self.notifications = []
        self.unread_count = 0
        self._cancel_popup_timer()
        self.current_popup = None

    def attach(self, stream: EventStream) -> Subscription:
        """Create notifications from ``new-message`` events on ``stream``."""
        def on_new_message(data: dict) -> None:
            self.add(data.get("senderId"), data.get("senderName"), data.get("message"))

        return stream.subscribe("new-message", on_new_message)

    # =========================================================================
    # Popup
    # =========================================================================

    def _show_popup(self, notification: Notification) -> None:
        self._cancel_popup_timer()
        self.current_popup = notification
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: popup stays until dismissed explicitly
        self._popup_timer = asyncio.create_task(self._auto_dismiss(notification.id))

    async def _auto_dismiss(self, notification_id: int) -> None:
        await asyncio.sleep(self.popup_timeout)
        self._popup_timer = None
        self.dismiss(notification_id)

    def _cancel_popup_timer(self) -> None:
        timer = self._popup_timer
        self._popup_timer = None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
