"""DuckDB-based durable message store.

Messages outlive connections and server restarts. The realtime layer never
writes here; it only mirrors message creation as ephemeral events.

Database Schema:
    messages table:
        - seq: Auto-incrementing insertion counter (tie-breaker for ordering)
        - id: Message identifier (UUID)
        - sender_id: Author of the message
        - receiver_id: Addressee of the message
        - content: Message text
        - created_at: When the message was stored (UTC)
        - is_read: Whether the receiver has read it

Thread Safety:
    The DuckDB connection is NOT thread-safe. The store is used from the
    application's single event loop.

Usage:
    store = MessageStore("messages.duckdb")
    message = store.create("u1", "u2", "hi")
    history = store.list_between("u1", "u2")
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import duckdb

from .schemas import Message, utcnow

logger = logging.getLogger(__name__)

_COLUMNS = "id, sender_id, receiver_id, content, created_at, is_read"


class MessageStore:
    """Persistent message log backed by DuckDB.

    Attributes:
        _db_path: Path to the DuckDB database file (or ``:memory:``).
    """

    _db_path: str = "messages.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open the database and create the schema if needed.

        Args:
            db_path: Path to DuckDB file. Defaults to "messages.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[MessageStore] Initialized with db=%s", self._db_path)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the messages table and sequence (idempotent)."""
        conn = self._get_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                seq BIGINT DEFAULT nextval('messages_seq'),
                id VARCHAR PRIMARY KEY,
                sender_id VARCHAR NOT NULL,
                receiver_id VARCHAR NOT NULL,
                content VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL,
                is_read BOOLEAN NOT NULL DEFAULT FALSE
            )
        """)

    def create(self, sender_id: str, receiver_id: str, content: str) -> Message:
        """Persist one message.

        Raises:
            ValueError: If any field is missing or content is blank.
        """
        if not sender_id or not receiver_id:
            raise ValueError("sender_id and receiver_id are required")
        if not content or not content.strip():
            raise ValueError("content must not be empty")

        message = Message(
            id=str(uuid.uuid4()),
            senderId=sender_id,
            receiverId=receiver_id,
            content=content,
            createdAt=utcnow(),
        )
        self._get_connection().execute(
            f"INSERT INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            [
                message.id,
                message.senderId,
                message.receiverId,
                message.content,
                # Stored naive; every timestamp in this table is UTC.
                message.createdAt.replace(tzinfo=None),
                False,
            ],
        )
        return message

    def get(self, message_id: str) -> Optional[Message]:
        row = self._get_connection().execute(
            f"SELECT {_COLUMNS} FROM messages WHERE id = ?", [message_id]
        ).fetchone()
        return self._row_to_message(row) if row else None

    def list_between(self, user_a: str, user_b: str) -> List[Message]:
        """Return the conversation between two users, oldest first."""
        rows = self._get_connection().execute(
            f"""
            SELECT {_COLUMNS}
            FROM messages
            WHERE (sender_id = ? AND receiver_id = ?)
               OR (sender_id = ? AND receiver_id = ?)
            ORDER BY created_at ASC, seq ASC
            """,
            [user_a, user_b, user_b, user_a],
        ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def mark_read(self, from_user_id: str, to_user_id: str) -> int:
        """Mark every unread message from ``from_user_id`` to ``to_user_id`` as read.

        Returns:
            Number of messages updated.
        """
        rows = self._get_connection().execute(
            """
            UPDATE messages SET is_read = TRUE
            WHERE sender_id = ? AND receiver_id = ? AND NOT is_read
            RETURNING id
            """,
            [from_user_id, to_user_id],
        ).fetchall()
        return len(rows)

    def count_unread(self, user_id: str) -> int:
        """Number of unread messages addressed to ``user_id``."""
        row = self._get_connection().execute(
            "SELECT COUNT(*) FROM messages WHERE receiver_id = ? AND NOT is_read",
            [user_id],
        ).fetchone()
        return int(row[0]) if row else 0

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    @staticmethod
    def _row_to_message(row) -> Message:
        created_at = row[4]
        if isinstance(created_at, datetime) and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return Message(
            id=row[0],
            senderId=row[1],
            receiverId=row[2],
            content=row[3],
            createdAt=created_at,
            isRead=bool(row[5]),
        )
