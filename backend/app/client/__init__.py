"""Async client library for the marketplace chat service."""

from .api import ChatEntry, MessagesApi, UserProfile, normalize_history
from .connection import ConnectionState, RealtimeConnection
from .conversation import ConversationView
from .events import EventStream, Subscription
from .notifications import Notification, NotificationCenter
from .typing_indicator import TypingNotifier

__all__ = [
    "ChatEntry",
    "ConnectionState",
    "ConversationView",
    "EventStream",
    "MessagesApi",
    "Notification",
    "NotificationCenter",
    "RealtimeConnection",
    "Subscription",
    "TypingNotifier",
    "UserProfile",
    "normalize_history",
]
