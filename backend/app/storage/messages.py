"""DuckDB-based message history store.

Database Schema:
    messages table:
        - seq: Auto-incrementing sequence (primary key, paging anchor)
        - id: Public message UUID
        - room: Broadcast topic or canonical private room id
        - content: Message text
        - message_type: 'text' or 'file'
        - sender_id / sender_username / sender_avatar: sender snapshot
        - created_at: Persistence time (UTC, naive)

Thread Safety:
    The DuckDB connection is NOT thread-safe. The chat core calls the store
    from executor threads, so every statement runs under ``_lock``.

Usage:
    store = DuckDBMessageHistory.get_instance()
    message = store.append("general", sender, "hi")
    page = store.find_by_room("general", skip=0, limit=20)
"""
import logging
import threading
import uuid
from typing import List, Optional

import duckdb

from .base import MessageHistoryStore
from .schemas import (
    ChatMessage,
    MessageType,
    SenderInfo,
    from_db_timestamp,
    to_db_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

_COLUMNS = "seq, id, room, content, message_type, sender_id, sender_username, sender_avatar, created_at"


class DuckDBMessageHistory(MessageHistoryStore):
    """Singleton message store backed by DuckDB.

    Attributes:
        _instance: Singleton instance of the store.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["DuckDBMessageHistory"] = None
    _db_path: str = "messages.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path:
            self._db_path = db_path
        self._lock = threading.Lock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[MessageHistory] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "DuckDBMessageHistory":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and drop the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the sequence, table and index (idempotent)."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    seq BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
                    id VARCHAR NOT NULL,
                    room VARCHAR NOT NULL,
                    content VARCHAR NOT NULL,
                    message_type VARCHAR NOT NULL,
                    sender_id VARCHAR NOT NULL,
                    sender_username VARCHAR NOT NULL,
                    sender_avatar VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_room ON messages(room)")

    def append(
        self,
        room: str,
        sender: SenderInfo,
        content: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> ChatMessage:
        message_id = str(uuid.uuid4())
        with self._lock:
            # Timestamp taken under the lock so createdAt follows seq order.
            created_at = utcnow()
            row = self._get_connection().execute(
                """
                INSERT INTO messages
                  (id, room, content, message_type, sender_id, sender_username,
                   sender_avatar, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING seq
                """,
                [
                    message_id, room, content, message_type.value, sender.id,
                    sender.username, sender.avatar, to_db_timestamp(created_at),
                ],
            ).fetchone()

        return ChatMessage(
            id=message_id,
            content=content,
            sender=sender,
            room=room,
            messageType=message_type,
            createdAt=created_at,
            seq=row[0],
        )

    def find_by_room(
        self,
        room: str,
        skip: int = 0,
        limit: int = 20,
        max_seq: Optional[int] = None,
    ) -> List[ChatMessage]:
        query = f"SELECT {_COLUMNS} FROM messages WHERE room = ?"
        params: list = [room]
        if max_seq is not None:
            query += " AND seq <= ?"
            params.append(max_seq)
        query += " ORDER BY created_at DESC, seq DESC LIMIT ? OFFSET ?"
        params.extend([limit, skip])

        with self._lock:
            rows = self._get_connection().execute(query, params).fetchall()
        return [self._row_to_message(row) for row in rows]

    def count_by_room(self, room: str) -> int:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT count(*) FROM messages WHERE room = ?", [room]
            ).fetchone()
        return row[0]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    @staticmethod
    def _row_to_message(row) -> ChatMessage:
        seq, message_id, room, content, message_type, sender_id, username, avatar, created_at = row
        return ChatMessage(
            id=message_id,
            content=content,
            sender=SenderInfo(id=sender_id, username=username, avatar=avatar),
            room=room,
            messageType=MessageType(message_type),
            createdAt=from_db_timestamp(created_at),
            seq=seq,
        )
