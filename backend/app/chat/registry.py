"""Process-wide table of live WebSocket connections.

The registry answers two routing questions for the hub:
    - which connections belong to a user (notifications, multi-tab sessions)
    - which connections are subscribed to a room (conversation broadcasts)

Indexes:
    - connection_id -> ConnectionRecord
    - connection_id -> transport (WebSocket)
    - user_id -> set of connection_ids
    - room_id -> set of connection_ids

Thread Safety:
    Designed for a single asyncio event loop. Every mutation runs to
    completion between awaits, so no locks are needed. It is NOT
    thread-safe for access from multiple threads.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class ConnectionRecord:
    """Bookkeeping for one transport session.

    Attributes:
        connection_id: Unique id allocated on connect.
        user_id: Owning user, set by ``register-user``.
        current_room_id: Last room joined (diagnostics only; group
            membership is tracked separately and is additive).
    """
    connection_id: str
    user_id: Optional[str] = None
    current_room_id: Optional[str] = None


class ConnectionRegistry:
    """Maps users and rooms to live connections.

    Owned by the broadcast hub; constructed at application startup and
    cleared at shutdown.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ConnectionRecord] = {}
        self._transports: Dict[str, Any] = {}
        self._user_connections: Dict[str, Set[str]] = {}
        self._room_members: Dict[str, Set[str]] = {}

    def on_connect(self, transport: Any = None) -> str:
        """Allocate an anonymous connection record and return its id."""
        connection_id = str(uuid.uuid4())
        self._records[connection_id] = ConnectionRecord(connection_id=connection_id)
        self._transports[connection_id] = transport
        logger.debug(f"[Registry] Connection {connection_id} opened")
        return connection_id

    def register(self, connection_id: str, user_id: str) -> None:
        """Bind a user identity to a connection.

        A user may own any number of concurrent connections. Registering a
        connection that already belongs to another user moves it.
        """
        record = self._records.get(connection_id)
        if record is None:
            logger.warning(f"[Registry] register() for unknown connection {connection_id}")
            return

        if record.user_id is not None and record.user_id != user_id:
            self._discard_user_connection(record.user_id, connection_id)

        record.user_id = user_id
        self._user_connections.setdefault(user_id, set()).add(connection_id)
        logger.info(
            f"[Registry] User {user_id} registered with connection {connection_id} "
            f"({len(self._user_connections[user_id])} active)"
        )

    def join_room(self, connection_id: str, room_id: str) -> bool:
        """Subscribe a connection to a room group.

        Returns True if the connection was newly added, False if it was
        already a member (rejoining is a no-op) or is unknown.
        """
        record = self._records.get(connection_id)
        if record is None:
            logger.warning(f"[Registry] join_room() for unknown connection {connection_id}")
            return False

        record.current_room_id = room_id
        members = self._room_members.setdefault(room_id, set())
        if connection_id in members:
            return False
        members.add(connection_id)
        return True

    def on_disconnect(self, connection_id: str) -> Optional[ConnectionRecord]:
        """Remove a connection from every index.

        A user whose last connection goes away simply disappears from the
        registry; absence is the offline signal.
        """
        record = self._records.pop(connection_id, None)
        self._transports.pop(connection_id, None)
        if record is None:
            return None

        if record.user_id is not None:
            self._discard_user_connection(record.user_id, connection_id)

        for room_id in [r for r, members in self._room_members.items() if connection_id in members]:
            members = self._room_members[room_id]
            members.discard(connection_id)
            if not members:
                del self._room_members[room_id]

        logger.info(f"[Registry] Connection {connection_id} closed (user={record.user_id})")
        return record

    def _discard_user_connection(self, user_id: str, connection_id: str) -> None:
        connections = self._user_connections.get(user_id)
        if connections is None:
            return
        connections.discard(connection_id)
        if not connections:
            del self._user_connections[user_id]

    # =========================================================================
    # Queries
    # =========================================================================

    def get_record(self, connection_id: str) -> Optional[ConnectionRecord]:
        return self._records.get(connection_id)

    def get_transport(self, connection_id: str) -> Any:
        return self._transports.get(connection_id)

    def connections_for_user(self, user_id: Optional[str]) -> Set[str]:
        if user_id is None:
            return set()
        return set(self._user_connections.get(user_id, ()))

    def connections_in_room(self, room_id: Optional[str]) -> Set[str]:
        if room_id is None:
            return set()
        return set(self._room_members.get(room_id, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self._user_connections.get(user_id))

    def online_users(self) -> List[str]:
        return sorted(self._user_connections)

    def connection_count(self) -> int:
        return len(self._records)

    def clear(self) -> None:
        """Drop all state (application shutdown)."""
        self._records.clear()
        self._transports.clear()
        self._user_connections.clear()
        self._room_members.clear()
