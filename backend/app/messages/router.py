"""Durable message REST endpoints.

Endpoints:
    GET  /api/messages/unread/count           - Unread messages addressed to the caller
    GET  /api/messages/{other_user_id}        - Conversation history, oldest first
    POST /api/messages                        - Persist a message, then relay it
    PUT  /api/messages/{other_user_id}/read   - Mark messages from other user as read

Caller identity comes from an upstream authentication layer and arrives in
the configured identity header (``X-User-Id`` by default).
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from starlette.requests import HTTPConnection

from app.chat.hub import BroadcastHub
from app.chat.rooms import ChatError, validate_user_id
from app.chat.router import get_hub
from app.config import get_config
from app.responses import error_response, success_response

from .schemas import MessageCreate
from .service import MessageStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


def get_store(conn: HTTPConnection) -> MessageStore:
    return conn.app.state.message_store


def get_current_user_id(conn: HTTPConnection) -> str:
    """Resolve the authenticated caller from the identity header.

    Raises:
        HTTPException: 401 when the header is missing or empty.
    """
    config = getattr(conn.app.state, "config", None) or get_config()
    header = config.auth.identity_header
    user_id = conn.headers.get(header, "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id


@router.get("/unread/count")
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    store: MessageStore = Depends(get_store),
):
    """Count unread messages addressed to the caller (notification badge)."""
    try:
        unread = store.count_unread(user_id)
    except Exception as e:
        logger.error(f"[messages] Unread count failed for {user_id}: {e}")
        return error_response(500, e)
    return success_response(200, {"unread": unread}, "Unread count fetched successfully")


@router.get("/{other_user_id}")
async def get_messages(
    other_user_id: str,
    user_id: str = Depends(get_current_user_id),
    store: MessageStore = Depends(get_store),
):
    """Return the conversation between the caller and ``other_user_id``.

    Returns:
        Envelope with ``data.messages`` sorted by createdAt ascending.
    """
    try:
        messages = store.list_between(user_id, other_user_id)
    except Exception as e:
        logger.error(f"[messages] History fetch failed for {user_id}/{other_user_id}: {e}")
        return error_response(500, e)
    return success_response(
        200,
        {"messages": [m.model_dump() for m in messages]},
        "Messages fetched successfully",
    )


@router.post("")
async def save_message(
    body: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    store: MessageStore = Depends(get_store),
    hub: BroadcastHub = Depends(get_hub),
):
    """Persist a message, then relay it in realtime.

    The store write happens first; the room broadcast and the receiver's
    notification carry the durable id. Relay failures do not affect the
    response because the message is already stored.

    Returns:
        201 envelope with ``data.message``; 400 if receiverId or content
        is missing, or if either participant id contains the room delimiter.
    """
    if not body.receiverId or not body.content or not body.content.strip():
        return error_response(400, "Please provide all required fields")

    try:
        validate_user_id(user_id)
        validate_user_id(body.receiverId)
    except ChatError as e:
        return error_response(400, e)

    try:
        message = store.create(user_id, body.receiverId, body.content)
    except Exception as e:
        logger.error(f"[messages] Failed to persist message from {user_id}: {e}")
        return error_response(500, e)

    try:
        await hub.deliver_persisted(message, body.senderName)
    except Exception as e:
        logger.error(f"[messages] Relay of {message.id} failed: {e}")

    logger.info(f"[messages] Saved {message.id} from {user_id} to {body.receiverId}")
    return success_response(201, {"message": message.model_dump()}, "Message saved successfully")


@router.put("/{other_user_id}/read")
async def mark_as_read(
    other_user_id: str,
    user_id: str = Depends(get_current_user_id),
    store: MessageStore = Depends(get_store),
):
    """Mark every message from ``other_user_id`` to the caller as read."""
    try:
        updated = store.mark_read(other_user_id, user_id)
    except Exception as e:
        logger.error(f"[messages] mark_read failed for {other_user_id}->{user_id}: {e}")
        return error_response(500, e)
    return success_response(200, {"updated": updated}, "Messages marked as read")
