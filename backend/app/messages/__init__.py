"""Durable message storage and REST API."""

from .schemas import Message, MessageCreate
from .service import MessageStore

__all__ = [
    "Message",
    "MessageCreate",
    "MessageStore",
]
