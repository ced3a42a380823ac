"""Out-of-band `new-message` delivery.

Notifications are routed by user registration only. The receiver gets one
frame per registered connection whether or not any of those connections has
the conversation room open, which is what drives global unread badges.
"""
import asyncio
import logging
from typing import Any, Iterable, List, Optional

from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


async def send_to_connections(
    registry: ConnectionRegistry, connection_ids: Iterable[str], message: dict
) -> int:
    """Send a frame to several connections concurrently.

    Connections whose send fails are removed from the registry.

    Returns:
        Number of connections the frame was delivered to.
    """
    targets: List[str] = list(connection_ids)
    if not targets:
        return 0

    results = await asyncio.gather(
        *[_safe_send(registry.get_transport(cid), message) for cid in targets],
        return_exceptions=True
    )

    delivered = 0
    for cid, success in zip(targets, results):
        if success is True:
            delivered += 1
        else:
            registry.on_disconnect(cid)
            logger.debug(f"Removed dead connection {cid}")
    return delivered


async def _safe_send(connection: Any, message: dict) -> bool:
    """Send a message to a WebSocket connection with error handling.

    Returns:
        True if successful, False if connection failed.
    """
    if connection is None:
        return False
    try:
        await connection.send_json(message)
        return True
    except Exception as e:
        logger.debug(f"Failed to send to connection: {e}")
        return False


class NotificationDispatcher:
    """Delivers `new-message` frames to every session of a receiver."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def notify(
        self,
        receiver_id: Optional[str],
        sender_id: Optional[str],
        sender_name: Optional[str],
        message: Optional[str],
        message_id: Optional[str] = None,
    ) -> int:
        """Notify every connection registered under ``receiver_id``.

        Returns:
            Number of connections reached (0 when the receiver is offline).
        """
        if not receiver_id:
            logger.debug("[Notify] No receiver; notification skipped")
            return 0

        payload = {
            "type": "new-message",
            "senderId": sender_id,
            "senderName": sender_name,
            "message": message,
        }
        if message_id is not None:
            payload["id"] = message_id

        targets = self.registry.connections_for_user(receiver_id)
        if not targets:
            logger.debug(f"[Notify] Receiver {receiver_id} is offline")
            return 0

        delivered = await send_to_connections(self.registry, targets, payload)
        logger.info(
            f"[Notify] new-message from {sender_id} delivered to "
            f"{delivered}/{len(targets)} connections of {receiver_id}"
        )
        return delivered
