"""Pydantic schemas for durable chat messages.

These schemas are used by:
    - GET /api/messages/{other_user_id}: Conversation history
    - POST /api/messages: Persist (and relay) one message
    - PUT /api/messages/{other_user_id}/read: Read receipts
    - MessageStore: DuckDB storage layer
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """A persisted chat message between two users.

    Created by the sender; only ``isRead`` ever changes afterwards.

    Attributes:
        id: Store-assigned unique identifier.
        senderId: User who wrote the message.
        receiverId: User the message is addressed to.
        content: Message text (never empty).
        createdAt: Server-assigned creation time (UTC).
        isRead: True once the receiver has opened the conversation.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Message ID")
    senderId: str = Field(..., description="Sender user ID")
    receiverId: str = Field(..., description="Receiver user ID")
    content: str = Field(..., min_length=1, description="Message text")
    createdAt: datetime = Field(default_factory=utcnow, description="Creation time (UTC)")
    isRead: bool = Field(default=False, description="Read by receiver")


class MessageCreate(BaseModel):
    """Request body for POST /api/messages.

    Fields are optional at the schema level so that missing values produce
    the API's own 400 envelope instead of a validation error.
    """
    receiverId: Optional[str] = Field(None, description="Receiver user ID")
    content: Optional[str] = Field(None, description="Message text")
    senderName: Optional[str] = Field(None, description="Display name for notifications")
