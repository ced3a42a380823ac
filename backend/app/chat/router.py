"""Chat router providing the realtime WebSocket endpoint.

This module provides:
    - WebSocket /ws/chat: one connection per client session

Protocol Flow:
    1. Client connects → Server sends: {type: "connected", connectionId}
    2. Client sends: {type: "register-user", userId}
    3. Client sends: {type: "join-chat", userId, otherUserId}
    4. Client sends: {type: "send-message", roomId, message, senderId, senderName}
       → Room receives: {type: "receive-message", roomId, message, senderId, senderName, timestamp}
       → Receiver's sessions receive: {type: "new-message", senderId, senderName, message}
    5. Client sends: {type: "typing", roomId, userId, isTyping}
       → Other room members receive: {type: "user-typing", userId, isTyping}
    6. On disconnect → registry cleanup
"""
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.requests import HTTPConnection

from .hub import BroadcastHub
from .rooms import ChatError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_hub(conn: HTTPConnection) -> BroadcastHub:
    return conn.app.state.hub


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    hub: BroadcastHub = Depends(get_hub),
) -> None:
    """WebSocket endpoint for realtime chat and notifications.

    Frames are handled one at a time per connection; each is processed to
    completion before the next is read.

    Args:
        websocket: The WebSocket connection.
        hub: Broadcast hub owned by the application.
    """
    await websocket.accept()
    connection_id = hub.connect(websocket)
    logger.info(
        f"[WS] Connection {connection_id} accepted "
        f"({hub.registry.connection_count()} open)"
    )

    try:
        await websocket.send_json({"type": "connected", "connectionId": connection_id})

        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                await websocket.send_json({"type": "error", "error": "Invalid JSON frame"})
                continue

            if not isinstance(data, dict):
                await websocket.send_json({"type": "error", "error": "Frame must be a JSON object"})
                continue

            logger.debug("[WS] %s received: type=%s", connection_id, data.get("type", "?"))
            try:
                await hub.dispatch(connection_id, data)
            except ChatError as e:
                await websocket.send_json({"type": "error", "error": str(e)})

    except WebSocketDisconnect:
        logger.info(f"[WS] Connection {connection_id} disconnected")
    finally:
        hub.disconnect(connection_id)
